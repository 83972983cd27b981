from abc import ABC, abstractmethod

# --- Códigos Win32 (API de Cluster) ---
ERROR_SUCCESS = 0
ERROR_ACCESS_DENIED = 5
ERROR_INVALID_PARAMETER = 87
ERROR_MORE_DATA = 234
ERROR_NO_MORE_ITEMS = 259
ERROR_IO_PENDING = 997
RPC_S_SERVER_UNAVAILABLE = 1722
ERROR_RESOURCE_NOT_FOUND = 5007
ERROR_GROUP_NOT_FOUND = 5013
ERROR_INVALID_STATE = 5023
ERROR_CLUSTER_NODE_NOT_FOUND = 5042

# --- ReturnValue dos métodos WMI do Hyper-V ---
RETURN_COMPLETED = 0
RETURN_JOB_STARTED = 4096
RETURN_FAILED = 32768
RETURN_ACCESS_DENIED = 32769
RETURN_NOT_SUPPORTED = 32770
RETURN_TIMEOUT = 32772
RETURN_INVALID_PARAMETER = 32773
RETURN_SYSTEM_IN_USE = 32774
RETURN_INVALID_STATE = 32775
RETURN_SYSTEM_NOT_AVAILABLE = 32777
RETURN_OUT_OF_MEMORY = 32778
RETURN_FILE_NOT_FOUND = 32779

# Tipos de entidade aceitos por open()/open_enum()
KIND_HOST = 'host'
KIND_CLUSTER = 'cluster'
KIND_NODE = 'node'
KIND_GROUP = 'group'
KIND_RESOURCE = 'resource'
KIND_VM = 'vm'
KIND_SWITCH = 'switch'
KIND_VHD = 'vhd'
KIND_SNAPSHOT = 'snapshot'
KIND_POOL = 'pool'


class HostControlInterface(ABC):
    """
    Contrato mínimo com o substrato de gerenciamento do host.

    Duas famílias de chamadas:
    - Estilo cluster: handles abertos por nome, enumeração paginada por índice
      (probe de tamanho + leitura do valor) e códigos de status Win32.
    - Estilo WMI: objetos identificados por path, consultas de associação/referência
      e métodos que devolvem um dicionário de out-params com 'ReturnValue'.

    Todas as chamadas são síncronas e podem bloquear (rede/IPC).
    """

    # --- Handles ---

    @abstractmethod
    def open_container(self, kind, name=None):
        """
        Abre o container raiz: KIND_HOST (objetos Hyper-V) ou KIND_CLUSTER
        (name vazio = cluster do próprio host). Retorna o handle bruto.
        """

    @abstractmethod
    def open(self, container, kind, name):
        """Abre uma entidade nomeada. Retorna o handle bruto ou None se não existir."""

    @abstractmethod
    def close(self, raw):
        pass

    # --- Enumeração paginada ---

    @abstractmethod
    def open_enum(self, container, kind):
        """Abre um cursor de enumeração no host."""

    @abstractmethod
    def enum_item(self, cursor, index, buffer_size=0):
        """
        Lê o item `index` do cursor.
        Retorna (status, name, required_size). Com buffer insuficiente o status é
        ERROR_MORE_DATA e name é None; ao fim da coleção é ERROR_NO_MORE_ITEMS.
        """

    @abstractmethod
    def close_enum(self, cursor):
        pass

    # --- Estado e controle ---

    @abstractmethod
    def get_state(self, raw):
        """Retorna (código numérico do estado, nome do nó dono ou None)."""

    @abstractmethod
    def control(self, raw, operation, target=None):
        """
        Executa uma operação de controle (online, offline, move, pause, resume).
        Retorna o código Win32; ERROR_IO_PENDING indica execução assíncrona.
        Transportes que recebem a descrição do erro junto do código podem
        levantar o erro tipado diretamente.
        """

    # --- WMI ---

    @abstractmethod
    def query(self, wql, namespace=None):
        """
        Executa uma consulta WQL (no namespace de virtualização por padrão).
        Retorna lista de dicts com a chave '__PATH'.
        """

    @abstractmethod
    def get_object(self, path):
        """Retorna o objeto do path informado ou None."""

    @abstractmethod
    def associators(self, path, assoc_class=None, result_class=None):
        pass

    @abstractmethod
    def references(self, path, result_class=None):
        pass

    @abstractmethod
    def invoke(self, path, method, **params):
        """
        Invoca um método WMI. Objetos embutidos são passados como dict
        (com a chave '__CLASS'). Retorna os out-params, incluindo 'ReturnValue'.
        """

    def container_name(self, container):
        """Nome do container aberto por open_container()."""
        return str(container)

    def ping(self):
        """Verificação leve de conectividade usada pelo health check."""
        return self.query('SELECT Name FROM Msvm_VirtualSystemManagementService')


def escape_wql(value):
    """Escapa barras e aspas simples para uso em literais WQL."""
    return str(value).replace('\\', '\\\\').replace("'", "\\'")
