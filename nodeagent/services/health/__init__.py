from .providers.hyperv import HyperVHealthCheck
from .providers.cluster import ClusterHealthCheck


def get_system_health(providers=None):
    """Executa a verificação de saúde em todos os subsistemas registrados."""
    if providers is None:
        providers = [HyperVHealthCheck(), ClusterHealthCheck()]

    results = [provider.run() for provider in providers]
    healthy = all(r['status'] == 'healthy' for r in results)

    return {
        "status": "healthy" if healthy else "unhealthy",
        "checks": results
    }
