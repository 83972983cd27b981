class NodeAgentError(Exception):
    """
    Base de todos os erros tipados do agente.
    Carrega o código numérico e a descrição devolvidos pelo host, quando existirem.
    """
    status_code = 500

    def __init__(self, message, code=None, description=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.description = description

    def to_dict(self):
        data = {'success': False, 'error': self.message}
        if self.code is not None:
            data['code'] = self.code
        if self.description:
            data['description'] = self.description
        return data


class NotFoundError(NodeAgentError):
    status_code = 404


class InvalidStateError(NodeAgentError):
    status_code = 409


class HandleClosedError(InvalidStateError):
    pass


class MmioNotConfiguredError(InvalidStateError):
    pass


class InvalidParameterError(NodeAgentError):
    status_code = 400


class OperationFailedError(NodeAgentError):
    status_code = 500


class JobTimeoutError(NodeAgentError, TimeoutError):
    status_code = 504


class PermissionDeniedError(NodeAgentError):
    status_code = 403


class CapacityExceededError(NodeAgentError):
    status_code = 409


class NegotiationError(NodeAgentError):
    """Falha em um dos passos pool -> capabilities -> template default."""
    status_code = 422


class PoolNotFoundError(NegotiationError):
    pass


class CapabilitiesNotFoundError(NegotiationError):
    pass


class DefaultTemplateNotFoundError(NegotiationError):
    pass


class ConnectionFailedError(NodeAgentError):
    status_code = 502
