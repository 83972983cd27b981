import os


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-change-in-production'

    # --- CONFIGS GERAIS ---
    DEBUG = False
    TESTING = False

    # --- HOST HYPER-V (WinRM) ---
    HYPERV_HOST = os.environ.get('HYPERV_HOST', 'hv-01.local')
    HYPERV_USER = os.environ.get('HYPERV_USER', 'Administrator')
    HYPERV_PASSWORD = os.environ.get('HYPERV_PASSWORD', '')
    HYPERV_TRANSPORT = os.environ.get('HYPERV_TRANSPORT', 'ntlm')
    HYPERV_PORT = int(os.environ['HYPERV_PORT']) if os.environ.get('HYPERV_PORT') else None
    HYPERV_USE_SSL = os.environ.get('HYPERV_USE_SSL', 'false').lower() == 'true'
    HYPERV_VERIFY_SSL = os.environ.get('HYPERV_VERIFY_SSL', 'false').lower() == 'true'
    HYPERV_NAMESPACE = os.environ.get('HYPERV_NAMESPACE', 'root\\virtualization\\v2')

    # --- FAILOVER CLUSTER ---
    # Vazio = cluster do próprio host
    CLUSTER_NAME = os.environ.get('CLUSTER_NAME', '')

    # --- API & CORS ---
    API_PREFIX = '/api'
    CORS_ORIGINS = ['http://localhost:5000', 'http://localhost:5173']

    # --- JOBS ASSÍNCRONOS ---
    JOB_TIMEOUT = int(os.environ.get('JOB_TIMEOUT', 300))
    JOB_POLL_INTERVAL = float(os.environ.get('JOB_POLL_INTERVAL', 0.1))
    JOB_POLL_MAX_INTERVAL = float(os.environ.get('JOB_POLL_MAX_INTERVAL', 2.0))


class DevelopmentConfig(Config):
    """Configuração para desenvolvimento local contra um host de laboratório."""
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    """Configuração para a suíte de testes: nenhum host real é contactado."""
    TESTING = True
    HYPERV_HOST = 'mock.hv'
    HYPERV_USER = 'test'
    HYPERV_PASSWORD = 'test'
    CLUSTER_NAME = 'mock-cluster'
    JOB_TIMEOUT = 1
    JOB_POLL_INTERVAL = 0.01
    JOB_POLL_MAX_INTERVAL = 0.05
