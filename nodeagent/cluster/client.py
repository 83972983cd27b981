import logging
import time

from flask import current_app

from nodeagent.errors import ConnectionFailedError, InvalidStateError, JobTimeoutError, OperationFailedError
from nodeagent.handles import enumerate_handles, iter_names, open_handle
from nodeagent.host.base import KIND_CLUSTER, KIND_GROUP, KIND_NODE, KIND_RESOURCE
from nodeagent.host.winrm import WinRMHost
from nodeagent.jobs import JobTracker
from nodeagent.models import ClusterInfo


class ClusterClient:
    """
    Cliente Base do Failover Cluster.
    Abre o cluster sob demanda e concentra a decodificação dos códigos de controle.
    """

    def __init__(self):
        self.config = None
        self._connection = None
        self._cluster = None
        self._jobs = None
        self.logger = logging.getLogger(__name__)

    def init_app(self, app):
        self.config = app.config

        if not self.config.get('HYPERV_HOST'):
            self.logger.warning("HYPERV_HOST não definido: o cluster será aberto no host local do WinRM.")

    @property
    def connection(self):
        if self._connection:
            return self._connection

        if not self.config and current_app:
            self.config = current_app.config

        if not self.config:
            raise RuntimeError("ClusterClient não inicializado. Chame init_app(app) primeiro.")

        host = self.config.get('HYPERV_HOST')
        try:
            self._connection = WinRMHost(
                host,
                user=self.config.get('HYPERV_USER'),
                password=self.config.get('HYPERV_PASSWORD'),
                transport=self.config.get('HYPERV_TRANSPORT', 'ntlm'),
                port=self.config.get('HYPERV_PORT'),
                use_ssl=str(self.config.get('HYPERV_USE_SSL', False)).lower() == 'true',
                verify_ssl=str(self.config.get('HYPERV_VERIFY_SSL', False)).lower() == 'true',
            )
            return self._connection
        except Exception as e:
            self.logger.error(f"Falha ao conectar no cluster via {host}: {str(e)}")
            raise ConnectionFailedError(f"Falha ao conectar no cluster via {host}: {e}") from e

    @property
    def cluster(self):
        """Handle bruto do cluster (CLUSTER_NAME vazio = cluster do próprio host)."""
        if self._cluster is None:
            name = (self.config or {}).get('CLUSTER_NAME') or None
            self._cluster = self.connection.open_container(KIND_CLUSTER, name)
        return self._cluster

    @property
    def jobs(self):
        if self._jobs is None:
            self._jobs = JobTracker(self.connection)
        return self._jobs

    def get_cluster_info(self):
        counts = {
            kind: sum(1 for _ in iter_names(self.connection, self.cluster, kind))
            for kind in (KIND_NODE, KIND_GROUP, KIND_RESOURCE)
        }
        return ClusterInfo(
            self.connection.container_name(self.cluster),
            node_count=counts[KIND_NODE],
            group_count=counts[KIND_GROUP],
            resource_count=counts[KIND_RESOURCE],
        ).to_dict()

    # --- Helpers para os Mixins ---

    def _open(self, kind, name):
        return open_handle(self.connection, self.cluster, kind, name)

    def _iter(self, kind):
        return enumerate_handles(self.connection, self.cluster, kind)

    def _observe(self, handle, state_type):
        code, owner = handle.state()
        state = state_type.decode(code)
        return state, (None if state.is_unknown else owner)

    def _check_transition(self, handle, state, operation, allowed):
        if state.name not in allowed:
            raise InvalidStateError(
                f"Operação '{operation}' inválida para {handle.kind} '{handle.name}' no estado {state}.",
                code=state.code,
            )

    def _control(self, handle, operation, target=None):
        """Emite o controle e decodifica o retorno (ERROR_IO_PENDING = aceito)."""
        code = handle.control(operation, target)
        label = f"{operation} {handle.kind} '{handle.name}'"
        if target:
            label = f"{label} -> {target}"
        submission = self.jobs.submit(code, label)
        self.logger.info(f"Cluster: {label} {submission.status}")
        return submission

    def _wait_for_state(self, kind, name, state_type, done, timeout=None, start_state=None):
        """
        Reconsulta o estado até `done(state, owner)` ser verdadeiro.
        Falha se a entidade passar a Failed durante a espera; nunca espera além do timeout.
        """
        if timeout is None:
            timeout = (self.config or {}).get('JOB_TIMEOUT', 300)
        config = self.config or {}
        interval = config.get('JOB_POLL_INTERVAL', 0.1)
        max_interval = config.get('JOB_POLL_MAX_INTERVAL', 2.0)
        deadline = time.monotonic() + timeout
        # Partindo de Failed, só um novo Failed (depois de sair dele) conta como falha
        left_failed = start_state is None or start_state.name != 'Failed'

        while True:
            with self._open(kind, name) as handle:
                state, owner = self._observe(handle, state_type)
            if done(state, owner):
                return state, owner
            if state.name != 'Failed':
                left_failed = True
            elif left_failed:
                raise OperationFailedError(f"{kind} '{name}' entrou em estado Failed.", code=state.code)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise JobTimeoutError(f"Timeout ({timeout}s) aguardando {kind} '{name}' (estado {state}).")
            time.sleep(min(interval, remaining))
            interval = min(interval * 2, max_interval)
