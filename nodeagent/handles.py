import logging
from contextlib import closing, contextmanager

from nodeagent.errors import HandleClosedError, NotFoundError, OperationFailedError
from nodeagent.host.base import ERROR_MORE_DATA, ERROR_NO_MORE_ITEMS, ERROR_SUCCESS

logger = logging.getLogger(__name__)


class Handle:
    """
    Referência a uma entidade nomeada do host (node, group, resource, vm, ...).

    Válido apenas entre open() e close(). Usar um handle já liberado levanta
    HandleClosedError. Não é seguro compartilhar entre threads para mutação.
    """

    def __init__(self, host, kind, name, raw):
        self.host = host
        self.kind = kind
        self.name = name
        self._raw = raw

    @property
    def closed(self):
        return self._raw is None

    @property
    def raw(self):
        if self._raw is None:
            raise HandleClosedError(f"Handle {self.kind} '{self.name}' já foi liberado.")
        return self._raw

    def state(self):
        """Retorna (código, dono) como reportado pelo host."""
        return self.host.get_state(self.raw)

    def control(self, operation, target=None):
        return self.host.control(self.raw, operation, target)

    def close(self):
        if self._raw is None:
            return
        raw, self._raw = self._raw, None
        self.host.close(raw)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        status = 'closed' if self.closed else 'open'
        return f"<Handle {self.kind}:{self.name} ({status})>"


def open_handle(host, container, kind, name):
    """Abre uma entidade pelo nome. Levanta NotFoundError se ela não existir."""
    raw = host.open(container, kind, name)
    if raw is None:
        raise NotFoundError(f"{kind} '{name}' não encontrado.")
    return Handle(host, kind, name, raw)


@contextmanager
def enumeration_cursor(host, container, kind):
    """Cursor de enumeração com liberação garantida em qualquer caminho de saída."""
    cursor = host.open_enum(container, kind)
    try:
        yield cursor
    finally:
        host.close_enum(cursor)


def iter_names(host, container, kind):
    """
    Produz os nomes da coleção usando o protocolo paginado do host:
    um probe para descobrir o tamanho do próximo nome e uma segunda chamada para lê-lo.
    Termina no sentinela ERROR_NO_MORE_ITEMS.
    """
    with enumeration_cursor(host, container, kind) as cursor:
        index = 0
        while True:
            status, _, required = host.enum_item(cursor, index, 0)
            if status == ERROR_NO_MORE_ITEMS:
                return
            if status != ERROR_MORE_DATA:
                raise OperationFailedError(
                    f"Falha ao enumerar {kind} (item {index}).", code=status
                )

            status, name, _ = host.enum_item(cursor, index, required)
            if status == ERROR_NO_MORE_ITEMS:
                return
            if status != ERROR_SUCCESS:
                raise OperationFailedError(
                    f"Falha ao ler {kind} (item {index}).", code=status
                )

            yield name
            index += 1


def enumerate_handles(host, container, kind):
    """
    Sequência lazy e finita de handles abertos. Cada chamada faz uma nova passada.
    Itens que somem entre a enumeração e o open são ignorados.
    """
    with closing(iter_names(host, container, kind)) as names:
        for name in names:
            try:
                handle = open_handle(host, container, kind, name)
            except NotFoundError:
                logger.debug(f"{kind} '{name}' desapareceu durante a enumeração, ignorando.")
                continue
            yield handle
