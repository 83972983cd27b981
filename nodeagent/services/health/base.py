from abc import ABC, abstractmethod
import time


class HealthCheckProvider(ABC):
    """Interface base dos verificadores de saúde (host Hyper-V, cluster, ...)."""

    @property
    @abstractmethod
    def name(self):
        pass

    @property
    @abstractmethod
    def category(self):
        """'compute', 'cluster', ..."""
        pass

    @abstractmethod
    def check(self):
        """
        Retorna um dicionário com 'status' e metadados opcionais,
        ou levanta uma exceção se o subsistema estiver indisponível.
        """
        pass

    def run(self):
        """Executa check() medindo a latência; qualquer falha vira status 'unhealthy'."""
        start = time.perf_counter()
        try:
            result = self.check()
            result.setdefault('status', 'healthy')
        except Exception as e:
            result = {'status': 'unhealthy', 'error': str(e), 'error_type': type(e).__name__}

        result['latency_ms'] = round((time.perf_counter() - start) * 1000, 2)
        result['name'] = self.name
        result['category'] = self.category
        return result
