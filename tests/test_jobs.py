# tests/test_jobs.py
from unittest.mock import MagicMock

import pytest

from nodeagent.errors import (
    CapacityExceededError,
    ConnectionFailedError,
    InvalidStateError,
    JobTimeoutError,
    OperationFailedError,
    PermissionDeniedError,
)
from nodeagent.jobs import Job, JobTracker, Submission

RUNNING = {'JobState': 4, 'PercentComplete': 40}
COMPLETED = {'JobState': 7, 'PercentComplete': 100}


@pytest.fixture
def host():
    return MagicMock()


@pytest.fixture
def tracker(host):
    return JobTracker(host, timeout=5, poll_interval=0.1, max_poll_interval=0.3)


@pytest.fixture
def no_sleep(mocker):
    return mocker.patch('nodeagent.jobs.time.sleep')


def test_submit_return_zero_is_completed(tracker):
    result = tracker.submit({'ReturnValue': 0, 'ResultingSystem': 'vm:1'}, 'create')

    assert result.status == Submission.COMPLETED
    assert result.job is None
    assert result.result['ResultingSystem'] == 'vm:1'


def test_submit_job_started_returns_accepted_job(tracker):
    result = tracker.submit({'ReturnValue': 4096, 'Job': 'job:42'}, 'start')

    assert result.status == Submission.ACCEPTED
    assert result.job.path == 'job:42'
    assert result.job.status == Job.PENDING


def test_submit_io_pending_is_accepted_not_failure(tracker):
    result = tracker.submit(997, 'online resource')

    assert result.accepted
    assert result.job is None
    assert result.to_dict()['status'] == 'Accepted'


@pytest.mark.parametrize('code, error_type', [
    (32775, InvalidStateError),
    (5023, InvalidStateError),
    (32778, CapacityExceededError),
    (5, PermissionDeniedError),
    (32769, PermissionDeniedError),
    (1722, ConnectionFailedError),
    (32768, OperationFailedError),
])
def test_submit_decodes_error_codes(tracker, code, error_type):
    with pytest.raises(error_type) as excinfo:
        tracker.submit(code, 'op')

    assert excinfo.value.code == code


def test_submit_keeps_host_description(tracker):
    with pytest.raises(OperationFailedError) as excinfo:
        tracker.submit({'ReturnValue': 32768, 'ErrorDescription': 'Arquivo em uso'}, 'delete VM')

    assert excinfo.value.description == 'Arquivo em uso'
    assert 'Arquivo em uso' in str(excinfo.value)


def test_wait_polls_until_completed(tracker, host, no_sleep):
    host.get_object.side_effect = [RUNNING, RUNNING, COMPLETED]
    job = Job('job:1', 'start')

    tracker.wait(job)

    assert job.status == Job.SUCCEEDED
    assert job.percent_complete == 100
    assert host.get_object.call_count == 3
    host.get_object.assert_called_with('job:1')


def test_wait_raises_with_code_and_description_on_failure(tracker, host, no_sleep):
    host.get_object.return_value = {
        'JobState': 10, 'ErrorCode': 32768, 'ErrorDescription': 'Falha ao aplicar snapshot',
    }
    job = Job('job:2', 'apply snapshot')

    with pytest.raises(OperationFailedError) as excinfo:
        tracker.wait(job)

    assert excinfo.value.code == 32768
    assert excinfo.value.description == 'Falha ao aplicar snapshot'
    assert job.status == Job.FAILED


def test_wait_times_out(tracker, host, no_sleep, mocker):
    host.get_object.return_value = RUNNING
    mocker.patch('nodeagent.jobs.time.monotonic', side_effect=[0, 0.5, 2.0])

    with pytest.raises(JobTimeoutError) as excinfo:
        tracker.wait(Job('job:3'), timeout=1)

    assert isinstance(excinfo.value, TimeoutError)
    no_sleep.assert_called_once_with(0.1)


def test_wait_backoff_is_bounded(tracker, host, no_sleep, mocker):
    mocker.patch('nodeagent.jobs.time.monotonic', return_value=0)
    host.get_object.side_effect = [RUNNING] * 4 + [COMPLETED]

    tracker.wait(Job('job:4'), timeout=100)

    delays = [c.args[0] for c in no_sleep.call_args_list]
    assert delays == [0.1, 0.2, 0.3, 0.3]


def test_unknown_job_state_is_not_terminal():
    job = Job('job:5').update({'JobState': 99})

    assert job.status == Job.UNKNOWN
    assert not job.done


def test_complete_marks_submission_completed(tracker, host, no_sleep):
    host.get_object.return_value = COMPLETED
    submission = tracker.submit({'ReturnValue': 4096, 'Job': 'job:6'}, 'save')

    tracker.complete(submission)

    assert submission.status == Submission.COMPLETED


def test_wait_in_background_returns_future(tracker, host, no_sleep):
    host.get_object.return_value = COMPLETED

    future = tracker.wait_in_background(Job('job:7'))

    assert future.result(timeout=5).status == Job.SUCCEEDED
