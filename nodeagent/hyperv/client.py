import logging

from flask import current_app

from nodeagent.errors import ConnectionFailedError, NotFoundError
from nodeagent.handles import enumerate_handles, open_handle
from nodeagent.host.winrm import WinRMHost
from nodeagent.host.base import KIND_HOST, KIND_VM
from nodeagent.jobs import JobTracker


class HyperVClient:
    """
    Cliente Base do Hyper-V.
    Responsável pela conexão com o host, pelo Job Tracker e pelos helpers WMI de baixo nível.
    As operações específicas (VMs, snapshots, GPU, ...) chegam via Mixins.
    """

    def __init__(self):
        self.config = None
        self._connection = None
        self._jobs = None
        self._root = None
        # VMs com MMIO configurado por este processo (ver DDAManager.configure_mmio)
        self._mmio_configured = set()
        self.logger = logging.getLogger(__name__)

    def init_app(self, app):
        self.config = app.config

        if not self.config.get('HYPERV_HOST'):
            self.logger.warning("HYPERV_HOST não definido na configuração.")

    @property
    def connection(self):
        """Host Control Interface ativo (criado sob demanda na primeira chamada)."""
        if self._connection:
            return self._connection

        if not self.config and current_app:
            self.config = current_app.config

        if not self.config:
            raise RuntimeError("HyperVClient não inicializado. Chame init_app(app) primeiro.")

        host = self.config.get('HYPERV_HOST')
        verify_ssl = str(self.config.get('HYPERV_VERIFY_SSL', False)).lower() == 'true'

        try:
            self._connection = WinRMHost(
                host,
                user=self.config.get('HYPERV_USER'),
                password=self.config.get('HYPERV_PASSWORD'),
                transport=self.config.get('HYPERV_TRANSPORT', 'ntlm'),
                port=self.config.get('HYPERV_PORT'),
                use_ssl=str(self.config.get('HYPERV_USE_SSL', False)).lower() == 'true',
                verify_ssl=verify_ssl,
                namespace=self.config.get('HYPERV_NAMESPACE', 'root\\virtualization\\v2'),
            )
            return self._connection
        except Exception as e:
            self.logger.error(f"Falha ao conectar no Hyper-V ({host}): {str(e)}")
            raise ConnectionFailedError(f"Falha ao conectar no Hyper-V ({host}): {e}") from e

    @property
    def jobs(self):
        if self._jobs is None:
            config = self.config or {}
            self._jobs = JobTracker(
                self.connection,
                timeout=config.get('JOB_TIMEOUT', 300),
                poll_interval=config.get('JOB_POLL_INTERVAL', 0.1),
                max_poll_interval=config.get('JOB_POLL_MAX_INTERVAL', 2.0),
            )
        return self._jobs

    @property
    def root(self):
        if self._root is None:
            self._root = self.connection.open_container(KIND_HOST)
        return self._root

    # --- Helpers para os Mixins ---

    def open_vm(self, name):
        return open_handle(self.connection, self.root, KIND_VM, name)

    def iter_vms(self):
        return enumerate_handles(self.connection, self.root, KIND_VM)

    def _get_vm_object(self, name):
        with self.open_vm(name) as handle:
            vm = self.connection.get_object(handle.raw)
        if vm is None:
            raise NotFoundError(f"VM '{name}' não encontrada.")
        return vm

    def _get_service(self, class_name):
        """Retorna o path do serviço de gerenciamento (singleton no host)."""
        services = self.connection.query(f"SELECT * FROM {class_name}")
        if not services:
            raise NotFoundError(f"Serviço {class_name} não encontrado no host.")
        return services[0]['__PATH']

    def _get_vm_settings(self, vm_path):
        """Msvm_VirtualSystemSettingData ativo (não-snapshot) da VM."""
        settings = self.connection.associators(
            vm_path,
            assoc_class='Msvm_SettingsDefineState',
            result_class='Msvm_VirtualSystemSettingData',
        )
        if not settings:
            raise NotFoundError(f"Configuração da VM {vm_path} não encontrada.")
        return settings[0]

    def _get_vm_resources(self, vm_path, result_class, subtype=None):
        """Itens de configuração (RASD) associados ao VSSD ativo da VM."""
        vssd = self._get_vm_settings(vm_path)
        items = self.connection.associators(
            vssd['__PATH'],
            assoc_class='Msvm_VirtualSystemSettingDataComponent',
            result_class=result_class,
        )
        if subtype:
            items = [i for i in items if i.get('ResourceSubType') == subtype]
        return items

    def _submit(self, outcome, operation, wait=False, timeout=None):
        """Decodifica o retorno do host e, se pedido, aguarda o job terminar."""
        submission = self.jobs.submit(outcome, operation)
        if wait:
            self.jobs.complete(submission, timeout)
        return submission

    def get_job(self, path):
        return self.jobs.get_job(path).to_dict()
