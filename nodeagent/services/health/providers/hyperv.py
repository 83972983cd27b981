from nodeagent.hyperv import hyperv_client
from nodeagent.services.health.base import HealthCheckProvider


class HyperVHealthCheck(HealthCheckProvider):
    @property
    def name(self):
        return "Hyper-V Host"

    @property
    def category(self):
        return "compute"

    def check(self):
        # Aciona o lazy loading da conexão; erro de config/rede sobe daqui
        services = hyperv_client.connection.ping()
        if not services:
            return {'status': 'unhealthy', 'error': 'Serviço de gerenciamento do Hyper-V ausente.'}

        return {
            'status': 'healthy',
            'details': {'host': hyperv_client.config.get('HYPERV_HOST')}
        }
