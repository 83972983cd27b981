from flask import Blueprint

from .client import HyperVClient
from .resources.vm import VMManager
from .resources.snapshot import SnapshotManager
from .resources.switch import SwitchManager
from .resources.capabilities import CapabilityManager
from .resources.storage import StorageManager
from .resources.gpu import GPUManager
from .resources.dda import DDAManager

bp = Blueprint('hyperv', __name__)


# HyperVClient fornece a base (self.connection, self.jobs); os mixins, as operações.
class HyperVService(HyperVClient,
                    VMManager,
                    SnapshotManager,
                    SwitchManager,
                    CapabilityManager,
                    StorageManager,
                    GPUManager,
                    DDAManager):
    """
    Serviço Unificado (Facade) do Hyper-V.

    1. Conexão com o host e rastreamento de jobs (via HyperVClient)
    2. Ciclo de vida das VMs (via VMManager)
    3. Snapshots, switches e discos
    4. Negociação de capacidades e atribuição de dispositivos (GPU-P e DDA)
    """
    pass


hyperv_client = HyperVService()

from . import routes  # noqa: E402,F401
