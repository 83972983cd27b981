class State:
    """
    Valor observado do estado de uma entidade.

    Cada subclasse declara KNOWN (código -> nome). Códigos fora da tabela viram
    Unknown(code): a decodificação nunca falha.
    """
    KNOWN = {}
    UNKNOWN = 'Unknown'

    def __init__(self, name, code=None):
        self.name = name
        self.code = code

    @classmethod
    def decode(cls, code):
        return cls(cls.KNOWN.get(code, cls.UNKNOWN), code)

    @property
    def is_unknown(self):
        return self.name == self.UNKNOWN

    def __eq__(self, other):
        if isinstance(other, State):
            return type(self) is type(other) and self.name == other.name and (
                not self.is_unknown or self.code == other.code)
        if isinstance(other, str):
            return self.name == other
        return NotImplemented

    def __hash__(self):
        return hash((type(self).__name__, self.name))

    def __str__(self):
        if self.is_unknown:
            return f"Unknown({self.code})"
        return self.name

    def __repr__(self):
        return f"{type(self).__name__}({self})"

    def to_dict(self):
        return {'state': str(self), 'code': self.code}


class VmState(State):
    RUNNING = 'Running'
    OFF = 'Off'
    STARTING = 'Starting'
    STOPPING = 'Stopping'
    SAVING = 'Saving'
    SAVED = 'Saved'
    PAUSING = 'Pausing'
    PAUSED = 'Paused'
    RESUMING = 'Resuming'

    # Msvm_ComputerSystem.EnabledState
    KNOWN = {
        2: RUNNING,
        3: OFF,
        4: STOPPING,        # ShuttingDown
        32768: PAUSED,
        32769: SAVED,
        32770: STARTING,
        32773: SAVING,
        32774: STOPPING,
        32776: PAUSING,
        32777: RESUMING,
        32779: SAVED,       # FastSaved
    }


class GroupState(State):
    ONLINE = 'Online'
    OFFLINE = 'Offline'
    FAILED = 'Failed'
    PARTIAL_ONLINE = 'PartialOnline'
    PENDING = 'Pending'

    KNOWN = {
        0: ONLINE,
        1: OFFLINE,
        2: FAILED,
        3: PARTIAL_ONLINE,
        4: PENDING,
    }


class ResourceState(State):
    ONLINE = 'Online'
    OFFLINE = 'Offline'
    FAILED = 'Failed'
    ONLINE_PENDING = 'OnlinePending'
    OFFLINE_PENDING = 'OfflinePending'

    KNOWN = {
        2: ONLINE,
        3: OFFLINE,
        4: FAILED,
        129: ONLINE_PENDING,
        130: OFFLINE_PENDING,
    }


class NodeState(State):
    UP = 'Up'
    DOWN = 'Down'
    PAUSED = 'Paused'
    JOINING = 'Joining'

    KNOWN = {
        0: UP,
        1: DOWN,
        2: PAUSED,
        3: JOINING,
    }
