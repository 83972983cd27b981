class ClusterInfo:
    def __init__(self, name, node_count=0, group_count=0, resource_count=0):
        self.name = name
        self.node_count = node_count
        self.group_count = group_count
        self.resource_count = resource_count

    def to_dict(self):
        return {
            'name': self.name,
            'nodes': self.node_count,
            'groups': self.group_count,
            'resources': self.resource_count,
        }


class NodeInfo:
    def __init__(self, name, state):
        self.name = name
        self.state = state

    def to_dict(self):
        return {'name': self.name, 'state': str(self.state), 'state_code': self.state.code}


class GroupInfo:
    def __init__(self, name, state, owner=None):
        self.name = name
        self.state = state
        # Sem dono quando o grupo não está alocado ou o estado é desconhecido
        self.owner = None if state.is_unknown else owner

    def to_dict(self):
        return {
            'name': self.name,
            'state': str(self.state),
            'state_code': self.state.code,
            'owner': self.owner,
        }


class ResourceInfo(GroupInfo):
    pass
