from flask import Blueprint

from .client import ClusterClient
from .resources.node import NodeManager
from .resources.group import GroupManager
from .resources.resource import ResourceManager

bp = Blueprint('cluster', __name__)


class ClusterService(ClusterClient, NodeManager, GroupManager, ResourceManager):
    """
    Serviço Unificado (Facade) do Failover Cluster.
    Sequencia pause/resume de nós e online/offline/move de grupos e recursos.
    """
    pass


cluster_client = ClusterService()

from . import routes  # noqa: E402,F401
