from nodeagent.host.base import KIND_NODE
from nodeagent.jobs import Submission
from nodeagent.models import NodeInfo, NodeState

PAUSE_FROM = {NodeState.UP}
RESUME_FROM = {NodeState.PAUSED}


class NodeManager:
    """Mixin de nós do cluster (pause/resume)."""

    def get_nodes(self):
        nodes = []
        for handle in self._iter(KIND_NODE):
            with handle:
                state, _ = self._observe(handle, NodeState)
            nodes.append(NodeInfo(handle.name, state).to_dict())
        return {'data': nodes, 'count': len(nodes)}

    def get_node(self, name):
        with self._open(KIND_NODE, name) as handle:
            state, _ = self._observe(handle, NodeState)
        return NodeInfo(name, state).to_dict()

    def get_node_state(self, name):
        with self._open(KIND_NODE, name) as handle:
            return self._observe(handle, NodeState)[0]

    def pause_node(self, name, wait=False, timeout=None):
        """Impede que novos grupos sejam colocados no nó. Grupos já em execução não são afetados."""
        with self._open(KIND_NODE, name) as handle:
            state, _ = self._observe(handle, NodeState)
            self._check_transition(handle, state, 'pause', PAUSE_FROM)
            submission = self._control(handle, 'pause')

        if wait and submission.accepted:
            self._wait_for_state(KIND_NODE, name, NodeState,
                                 lambda s, _: s.name == NodeState.PAUSED, timeout, state)
            submission.status = Submission.COMPLETED
        return dict(submission.to_dict(), node=name)

    def resume_node(self, name, wait=False, timeout=None):
        with self._open(KIND_NODE, name) as handle:
            state, _ = self._observe(handle, NodeState)
            self._check_transition(handle, state, 'resume', RESUME_FROM)
            submission = self._control(handle, 'resume')

        if wait and submission.accepted:
            self._wait_for_state(KIND_NODE, name, NodeState,
                                 lambda s, _: s.name == NodeState.UP, timeout, state)
            submission.status = Submission.COMPLETED
        return dict(submission.to_dict(), node=name)
