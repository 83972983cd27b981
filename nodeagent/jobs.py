import logging
import time
from concurrent.futures import ThreadPoolExecutor

from nodeagent.errors import (
    CapacityExceededError,
    ConnectionFailedError,
    InvalidParameterError,
    InvalidStateError,
    JobTimeoutError,
    NotFoundError,
    OperationFailedError,
    PermissionDeniedError,
)
from nodeagent.host import base

# Estados do CIM_ConcreteJob (JobState)
JOB_STATE_NEW = 2
JOB_STATE_STARTING = 3
JOB_STATE_RUNNING = 4
JOB_STATE_SUSPENDED = 5
JOB_STATE_SHUTTING_DOWN = 6
JOB_STATE_COMPLETED = 7
JOB_STATE_TERMINATED = 8
JOB_STATE_KILLED = 9
JOB_STATE_EXCEPTION = 10
JOB_STATE_SERVICE = 11

DEFAULT_TIMEOUT = 300
DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_POLL_MAX_INTERVAL = 2.0

_ERROR_TYPES = {
    base.ERROR_ACCESS_DENIED: PermissionDeniedError,
    base.RETURN_ACCESS_DENIED: PermissionDeniedError,
    base.ERROR_INVALID_PARAMETER: InvalidParameterError,
    base.RETURN_INVALID_PARAMETER: InvalidParameterError,
    base.ERROR_INVALID_STATE: InvalidStateError,
    base.RETURN_INVALID_STATE: InvalidStateError,
    base.RETURN_OUT_OF_MEMORY: CapacityExceededError,
    base.ERROR_RESOURCE_NOT_FOUND: NotFoundError,
    base.ERROR_GROUP_NOT_FOUND: NotFoundError,
    base.ERROR_CLUSTER_NODE_NOT_FOUND: NotFoundError,
    base.RETURN_FILE_NOT_FOUND: NotFoundError,
    base.RPC_S_SERVER_UNAVAILABLE: ConnectionFailedError,
    base.RETURN_SYSTEM_NOT_AVAILABLE: ConnectionFailedError,
}


def raise_for_code(code, operation, description=None):
    """Converte um código de erro do host no erro tipado correspondente."""
    error_type = _ERROR_TYPES.get(code, OperationFailedError)
    message = f"{operation} falhou (código {code})"
    if description:
        message = f"{message}: {description}"
    raise error_type(message, code=code, description=description)


class Job:
    PENDING = 'Pending'
    RUNNING = 'Running'
    SUCCEEDED = 'Succeeded'
    FAILED = 'Failed'
    UNKNOWN = 'Unknown'

    def __init__(self, path, operation=None):
        self.path = path
        self.operation = operation
        self.status = Job.PENDING
        self.error_code = None
        self.error_description = None
        self.percent_complete = 0
        self.job_state = None

    @property
    def done(self):
        return self.status in (Job.SUCCEEDED, Job.FAILED)

    def update(self, data):
        """Atualiza o job a partir de um Msvm_ConcreteJob lido do host."""
        state = data.get('JobState')
        self.job_state = state
        self.percent_complete = data.get('PercentComplete') or 0

        if state == JOB_STATE_COMPLETED:
            self.status = Job.SUCCEEDED
        elif state is not None and JOB_STATE_NEW <= state <= JOB_STATE_SHUTTING_DOWN:
            self.status = Job.PENDING if state == JOB_STATE_NEW else Job.RUNNING
        elif state in (JOB_STATE_TERMINATED, JOB_STATE_KILLED, JOB_STATE_EXCEPTION, JOB_STATE_SERVICE):
            self.status = Job.FAILED
            self.error_code = data.get('ErrorCode')
            self.error_description = data.get('ErrorDescription') or None
        else:
            self.status = Job.UNKNOWN
        return self

    def to_dict(self):
        return {
            'path': self.path,
            'operation': self.operation,
            'status': self.status,
            'percent_complete': self.percent_complete,
            'error_code': self.error_code,
            'error_description': self.error_description,
        }


class Submission:
    """
    Resultado de submeter uma operação ao host.
    COMPLETED: terminou de forma síncrona (ou era no-op).
    ACCEPTED: o host aceitou e está executando; `job` é preenchido quando rastreável.
    """
    COMPLETED = 'Completed'
    ACCEPTED = 'Accepted'

    def __init__(self, status, operation, job=None, result=None, noop=False):
        self.status = status
        self.operation = operation
        self.job = job
        self.result = result or {}
        self.noop = noop

    @property
    def accepted(self):
        return self.status == Submission.ACCEPTED

    def to_dict(self):
        data = {'status': self.status, 'operation': self.operation}
        if self.job:
            data['job'] = self.job.to_dict()
        if self.noop:
            data['noop'] = True
        return data


class JobTracker:
    """
    Decodificador central de status + polling de jobs.
    Nada é repetido automaticamente: quem chama decide a política de retry.
    """

    def __init__(self, host, timeout=DEFAULT_TIMEOUT, poll_interval=DEFAULT_POLL_INTERVAL,
                 max_poll_interval=DEFAULT_POLL_MAX_INTERVAL):
        self.host = host
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.logger = logging.getLogger(__name__)
        self._executor = None

    def submit(self, outcome, operation):
        """
        Decodifica o retorno de uma chamada ao host.
        `outcome` é um código Win32 (int) ou os out-params de um método WMI (dict).
        """
        if isinstance(outcome, dict):
            code = outcome.get('ReturnValue')
            result = outcome
        else:
            code = outcome
            result = {}

        if code == base.RETURN_COMPLETED:
            return Submission(Submission.COMPLETED, operation, result=result)

        if code == base.RETURN_JOB_STARTED:
            job = Job(result.get('Job'), operation)
            self.logger.info(f"{operation}: job iniciado ({job.path})")
            return Submission(Submission.ACCEPTED, operation, job=job, result=result)

        if code == base.ERROR_IO_PENDING:
            self.logger.info(f"{operation}: operação pendente no host")
            return Submission(Submission.ACCEPTED, operation, result=result)

        raise_for_code(code, operation, result.get('ErrorDescription'))

    def get_job(self, path, operation=None):
        """Lê o estado atual de um job pelo path."""
        return self.refresh(Job(path, operation))

    def refresh(self, job):
        data = self.host.get_object(job.path)
        if data is None:
            raise NotFoundError(f"Job '{job.path}' não encontrado.")
        return job.update(data)

    def wait(self, job, timeout=None):
        """
        Bloqueia até o job terminar, com backoff exponencial limitado.
        Levanta o erro tipado em caso de falha e JobTimeoutError ao esgotar o prazo.
        O job continua rodando no host após o timeout: não há cancelamento.
        """
        if timeout is None:
            timeout = self.timeout
        deadline = time.monotonic() + timeout
        interval = self.poll_interval

        while True:
            self.refresh(job)
            self.logger.debug(f"Job {job.path}: {job.status} ({job.percent_complete}%)")

            if job.status == Job.SUCCEEDED:
                return job
            if job.status == Job.FAILED:
                raise_for_code(job.error_code, job.operation or 'Job', job.error_description)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise JobTimeoutError(f"Timeout ({timeout}s) aguardando job {job.path}.")

            time.sleep(min(interval, remaining))
            interval = min(interval * 2, self.max_poll_interval)

    def complete(self, submission, timeout=None):
        """Aguarda a submissão se ela gerou um job; retorna a própria submissão."""
        if submission.job is not None:
            self.wait(submission.job, timeout)
            submission.status = Submission.COMPLETED
        return submission

    def wait_in_background(self, job, timeout=None):
        """Executa wait() em uma thread de apoio e retorna o Future."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix='job-wait')
        return self._executor.submit(self.wait, job, timeout)
