from nodeagent.cluster import cluster_client
from nodeagent.services.health.base import HealthCheckProvider


class ClusterHealthCheck(HealthCheckProvider):
    @property
    def name(self):
        return "Failover Cluster"

    @property
    def category(self):
        return "cluster"

    def check(self):
        nodes = cluster_client.get_nodes()['data']
        down = [n['name'] for n in nodes if n['state'] != 'Up']

        return {
            # Nó pausado ou fora não derruba o agente, mas é sinalizado
            'status': 'healthy' if nodes else 'unhealthy',
            'details': {
                'cluster': cluster_client.get_cluster_info()['name'],
                'nodes': len(nodes),
                'nodes_not_up': down,
            }
        }
