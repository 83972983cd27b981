import pytest

from nodeagent import create_app
from nodeagent.config import TestingConfig
from nodeagent.host.base import (
    ERROR_MORE_DATA,
    ERROR_NO_MORE_ITEMS,
    ERROR_SUCCESS,
    KIND_CLUSTER,
    KIND_VM,
    HostControlInterface,
)

HOST_ROOT = 'host'
CLUSTER = 'mock-cluster'


class FakeHost(HostControlInterface):
    """
    Host Control Interface em memória.
    Registra cada chamada para que os testes verifiquem o que (não) foi enviado ao host.
    """

    def __init__(self):
        self.containers = {}
        self.states = {}
        self.objects = {}
        self.queries = {}
        self.assoc = {}
        self.refs = {}
        self.invoke_results = {}
        self.control_results = {}
        self.vanished = set()

        self.invocations = []
        self.controls = []
        self.enum_calls = []
        self.closed = []
        self.enums_opened = 0
        self.enums_closed = 0
        self._cursors = {}

    # --- helpers de montagem ---

    def add(self, container, kind, name, raw=None, state=None, owner=None, obj=None):
        raw = raw or f"{kind}:{name}"
        self.containers.setdefault((container, kind), {})[name] = raw
        if state is not None:
            self.states[raw] = (state, owner)
        if obj is not None:
            self.objects[raw] = dict(obj, __PATH=raw)
        return raw

    def add_vm(self, name, state=3, generation=2):
        raw = self.add(HOST_ROOT, KIND_VM, name, state=state, obj={
            'Name': f"guid-{name}",
            'ElementName': name,
            'EnabledState': state,
            'OnTimeInMilliseconds': 0,
        })
        vssd = f"vssd:{name}"
        self.assoc[(raw, 'Msvm_VirtualSystemSettingData')] = [{
            '__PATH': vssd,
            'VirtualSystemSubType': f"Microsoft:Hyper-V:SubType:{generation}",
        }]
        return raw

    def set_vm_state(self, name, state):
        raw = f"vm:{name}"
        self.states[raw] = (state, None)
        self.objects[raw]['EnabledState'] = state

    def vm_items(self, name, result_class, items):
        self.assoc[(f"vssd:{name}", result_class)] = items

    def add_pool(self, subtype, template=None, role=0, with_caps=True):
        """Pool primordial -> capabilities -> template com o ValueRole informado."""
        pool = {'__PATH': f"pool:{subtype}", 'ResourceSubType': subtype}
        self.queries[f"ResourceSubType = '{subtype}'"] = [pool]
        if not with_caps:
            return pool
        caps = {'__PATH': f"caps:{subtype}", 'ResourceSubType': subtype}
        self.assoc[(pool['__PATH'], 'Msvm_AllocationCapabilities')] = [caps]
        template_path = f"template:{subtype}"
        self.refs[(caps['__PATH'], 'Msvm_SettingsDefineCapabilities')] = [
            {'ValueRole': role, 'PartComponent': template_path},
        ]
        self.objects[template_path] = dict(template or {}, __PATH=template_path)
        return pool

    # --- HostControlInterface ---

    def open_container(self, kind, name=None):
        return name or (HOST_ROOT if kind != KIND_CLUSTER else CLUSTER)

    def open(self, container, kind, name):
        if name in self.vanished:
            return None
        return self.containers.get((container, kind), {}).get(name)

    def close(self, raw):
        self.closed.append(raw)

    def open_enum(self, container, kind):
        self.enums_opened += 1
        cursor = self.enums_opened
        self._cursors[cursor] = list(self.containers.get((container, kind), {}))
        return cursor

    def enum_item(self, cursor, index, buffer_size=0):
        self.enum_calls.append((cursor, index, buffer_size))
        names = self._cursors[cursor]
        if index >= len(names):
            return ERROR_NO_MORE_ITEMS, None, 0
        required = len(names[index]) + 1
        if buffer_size < required:
            return ERROR_MORE_DATA, None, required
        return ERROR_SUCCESS, names[index], required

    def close_enum(self, cursor):
        self.enums_closed += 1
        self._cursors.pop(cursor)

    def get_state(self, raw):
        return self.states.get(raw, (None, None))

    def control(self, raw, operation, target=None):
        self.controls.append((raw, operation, target))
        return self.control_results.get((raw, operation), 0)

    def query(self, wql, namespace=None):
        if wql in self.queries:
            return [dict(r) for r in self.queries[wql]]
        for key, rows in self.queries.items():
            if key in wql:
                return [dict(r) for r in rows]
        return []

    def get_object(self, path):
        obj = self.objects.get(path)
        return dict(obj) if obj is not None else None

    def associators(self, path, assoc_class=None, result_class=None):
        return [dict(i) for i in self.assoc.get((path, result_class), [])]

    def references(self, path, result_class=None):
        return [dict(r) for r in self.refs.get((path, result_class), [])]

    def invoke(self, path, method, **params):
        self.invocations.append((path, method, params))
        result = self.invoke_results.get(method, {'ReturnValue': 0})
        if callable(result):
            return result(path, params)
        return dict(result)

    # --- consultas dos testes ---

    def invoked(self, method):
        return [i for i in self.invocations if i[1] == method]


@pytest.fixture
def app():
    """Instância do Flask configurada para testes (TestingConfig)."""
    app = create_app(TestingConfig)

    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield


@pytest.fixture
def fake_host():
    host = FakeHost()
    for service in ('Msvm_VirtualSystemManagementService',
                    'Msvm_VirtualSystemSnapshotService',
                    'Msvm_VirtualEthernetSwitchManagementService',
                    'Msvm_ImageManagementService',
                    'Msvm_AssignableDeviceService'):
        host.queries[f"FROM {service}"] = [{'__PATH': f"svc:{service}"}]
    return host


@pytest.fixture
def mock_winrm(mocker):
    """Impede que o sistema tente abrir uma sessão WinRM real."""
    return mocker.patch('nodeagent.host.winrm.winrm.Session').return_value


@pytest.fixture
def hyperv(app, fake_host):
    """HyperVService com o host falso injetado no lugar da conexão lazy."""
    from nodeagent.hyperv import HyperVService

    svc = HyperVService()
    svc.init_app(app)
    svc._connection = fake_host
    return svc


@pytest.fixture
def cluster(app, fake_host):
    from nodeagent.cluster import ClusterService

    svc = ClusterService()
    svc.init_app(app)
    svc._connection = fake_host
    return svc


@pytest.fixture
def api_host(app, fake_host):
    """Injeta o host falso nos singletons usados pelas rotas e os restaura no final."""
    from nodeagent.extensions import cluster_client, hyperv_client

    clients = (hyperv_client, cluster_client)
    for c in clients:
        c._connection = fake_host
        c._jobs = None
    hyperv_client._root = None
    cluster_client._cluster = None

    yield fake_host

    for c in clients:
        c._connection = None
        c._jobs = None
    hyperv_client._root = None
    hyperv_client._mmio_configured.clear()
    cluster_client._cluster = None
