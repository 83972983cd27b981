from flask_cors import CORS

from nodeagent.hyperv import hyperv_client
from nodeagent.cluster import cluster_client

# Inicialização das extensões
# Nota: A vinculação com o app (init_app) é feita no __init__.py
cors = CORS()

__all__ = ['cors', 'hyperv_client', 'cluster_client']
