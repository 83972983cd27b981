from nodeagent.errors import InvalidStateError
from nodeagent.host.base import KIND_GROUP, KIND_NODE
from nodeagent.jobs import Submission
from nodeagent.models import GroupInfo, GroupState, NodeState

ONLINE_FROM = {GroupState.OFFLINE, GroupState.FAILED, GroupState.PARTIAL_ONLINE}
OFFLINE_FROM = {GroupState.ONLINE, GroupState.PARTIAL_ONLINE, GroupState.FAILED}
MOVE_FROM = {GroupState.ONLINE, GroupState.PARTIAL_ONLINE}


class GroupManager:
    """Mixin de grupos de failover (online/offline/move)."""

    def get_groups(self):
        groups = []
        for handle in self._iter(KIND_GROUP):
            with handle:
                state, owner = self._observe(handle, GroupState)
            groups.append(GroupInfo(handle.name, state, owner).to_dict())
        return {'data': groups, 'count': len(groups)}

    def get_group(self, name):
        with self._open(KIND_GROUP, name) as handle:
            state, owner = self._observe(handle, GroupState)
        return GroupInfo(name, state, owner).to_dict()

    def get_group_state(self, name):
        """Retorna (GroupState, nó dono)."""
        with self._open(KIND_GROUP, name) as handle:
            return self._observe(handle, GroupState)

    def online_group(self, name, wait=False, timeout=None):
        with self._open(KIND_GROUP, name) as handle:
            state, _ = self._observe(handle, GroupState)
            self._check_transition(handle, state, 'online', ONLINE_FROM)
            submission = self._control(handle, 'online')

        if wait and submission.accepted:
            self._wait_for_state(KIND_GROUP, name, GroupState,
                                 lambda s, _: s.name == GroupState.ONLINE, timeout, state)
            submission.status = Submission.COMPLETED
        return dict(submission.to_dict(), group=name)

    def offline_group(self, name, wait=False, timeout=None):
        with self._open(KIND_GROUP, name) as handle:
            state, _ = self._observe(handle, GroupState)
            self._check_transition(handle, state, 'offline', OFFLINE_FROM)
            submission = self._control(handle, 'offline')

        if wait and submission.accepted:
            self._wait_for_state(KIND_GROUP, name, GroupState,
                                 lambda s, _: s.name == GroupState.OFFLINE, timeout, state)
            submission.status = Submission.COMPLETED
        return dict(submission.to_dict(), group=name)

    def move_group(self, name, target_node, wait=False, timeout=None):
        """
        Move o grupo para `target_node`.
        Se o dono atual já é o destino, retorna sucesso sem chamar o host.
        Por padrão não aguarda: reconsulte get_group() para ver o resultado.
        """
        with self._open(KIND_GROUP, name) as handle:
            state, owner = self._observe(handle, GroupState)
            if owner is not None and owner.lower() == target_node.lower():
                self.logger.info(f"Grupo '{name}' já está em '{target_node}', nada a fazer.")
                noop = Submission(Submission.COMPLETED, f"move group '{name}'", noop=True)
                return dict(noop.to_dict(), group=name, owner=owner)

            self._check_transition(handle, state, 'move', MOVE_FROM)

            with self._open(KIND_NODE, target_node) as node:
                node_state, _ = self._observe(node, NodeState)
                if node_state.name != NodeState.UP:
                    raise InvalidStateError(
                        f"Nó de destino '{target_node}' não está disponível (estado {node_state}).",
                        code=node_state.code,
                    )

            submission = self._control(handle, 'move', target_node)

        if wait and submission.accepted:
            self._wait_for_state(
                KIND_GROUP, name, GroupState,
                lambda s, o: s.name == GroupState.ONLINE and (o or '').lower() == target_node.lower(),
                timeout, state,
            )
            submission.status = Submission.COMPLETED
        return dict(submission.to_dict(), group=name, target=target_node)
