# tests/test_vm_lifecycle.py
import pytest

from nodeagent.errors import InvalidParameterError, InvalidStateError, NotFoundError
from nodeagent.models import VmState

OFF, RUNNING, PAUSED, SAVED = 3, 2, 32768, 32769


def test_pause_from_off_fails_without_contacting_host(hyperv, fake_host):
    fake_host.add_vm('web-01', state=OFF)

    with pytest.raises(InvalidStateError):
        hyperv.pause_vm('web-01')

    assert fake_host.invocations == []


@pytest.mark.parametrize('method, state', [
    ('resume_vm', RUNNING),
    ('save_vm', OFF),
    ('reset_vm', PAUSED),
    ('stop_vm', SAVED),
    ('force_stop_vm', OFF),
    ('start_vm', RUNNING),
    ('delete_vm', RUNNING),
])
def test_illegal_transitions_are_rejected_locally(hyperv, fake_host, method, state):
    fake_host.add_vm('web-01', state=state)

    with pytest.raises(InvalidStateError):
        getattr(hyperv, method)('web-01')

    assert fake_host.invocations == []


@pytest.mark.parametrize('method, state, requested', [
    ('start_vm', OFF, 2),
    ('start_vm', SAVED, 2),
    ('resume_vm', PAUSED, 2),
    ('pause_vm', RUNNING, 32768),
    ('save_vm', RUNNING, 32769),
    ('reset_vm', RUNNING, 11),
    ('force_stop_vm', SAVED, 3),
])
def test_legal_transitions_request_state_change(hyperv, fake_host, method, state, requested):
    fake_host.add_vm('web-01', state=state)

    result = getattr(hyperv, method)('web-01')

    assert result['status'] == 'Completed'
    [(path, _, params)] = fake_host.invoked('RequestStateChange')
    assert path == 'vm:web-01'
    assert params == {'RequestedState': requested}


def test_start_returns_accepted_job(hyperv, fake_host):
    fake_host.add_vm('web-01', state=OFF)
    fake_host.invoke_results['RequestStateChange'] = {'ReturnValue': 4096, 'Job': 'job:1'}

    result = hyperv.start_vm('web-01')

    assert result['status'] == 'Accepted'
    assert result['job']['path'] == 'job:1'
    assert result['vm'] == 'web-01'


def test_start_with_wait_polls_the_job(hyperv, fake_host, mocker):
    mocker.patch('nodeagent.jobs.time.sleep')
    fake_host.add_vm('web-01', state=OFF)
    fake_host.invoke_results['RequestStateChange'] = {'ReturnValue': 4096, 'Job': 'job:1'}
    fake_host.objects['job:1'] = {'JobState': 7, 'PercentComplete': 100}

    result = hyperv.start_vm('web-01', wait=True)

    assert result['status'] == 'Completed'
    assert result['job']['status'] == 'Succeeded'


def test_graceful_stop_uses_shutdown_component(hyperv, fake_host):
    raw = fake_host.add_vm('web-01', state=RUNNING)
    fake_host.assoc[(raw, 'Msvm_ShutdownComponent')] = [{'__PATH': 'shutdown:web-01'}]

    hyperv.stop_vm('web-01')

    [(path, method, params)] = fake_host.invocations
    assert (path, method) == ('shutdown:web-01', 'InitiateShutdown')
    assert params['Force'] is False
    assert fake_host.invoked('RequestStateChange') == []


def test_graceful_stop_never_falls_back_to_force(hyperv, fake_host):
    fake_host.add_vm('web-01', state=RUNNING)

    with pytest.raises(InvalidStateError):
        hyperv.stop_vm('web-01')

    assert fake_host.invocations == []


def test_unknown_state_rejects_every_transition(hyperv, fake_host):
    fake_host.add_vm('web-01', state=32783)

    assert hyperv.get_vm_state('web-01') == VmState.decode(32783)
    with pytest.raises(InvalidStateError):
        hyperv.start_vm('web-01')


def test_missing_vm_raises_not_found(hyperv):
    with pytest.raises(NotFoundError):
        hyperv.start_vm('ghost')


def test_handles_are_released_after_operations(hyperv, fake_host):
    fake_host.add_vm('web-01', state=OFF)

    hyperv.start_vm('web-01')

    assert fake_host.closed == ['vm:web-01']


def test_get_vms_lists_states(hyperv, fake_host):
    fake_host.add_vm('a', state=RUNNING)
    fake_host.add_vm('b', state=SAVED)

    result = hyperv.get_vms()

    assert result['count'] == 2
    assert [(v['name'], v['state']) for v in result['data']] == [('a', 'Running'), ('b', 'Saved')]


def test_get_vm_reads_memory_and_processors(hyperv, fake_host):
    fake_host.add_vm('web-01', state=OFF, generation=1)
    fake_host.vm_items('web-01', 'Msvm_MemorySettingData', [{'__PATH': 'mem', 'VirtualQuantity': 4096}])
    fake_host.vm_items('web-01', 'Msvm_ProcessorSettingData', [{'__PATH': 'cpu', 'VirtualQuantity': 4}])

    vm = hyperv.get_vm('web-01')

    assert vm['memory_mb'] == 4096
    assert vm['cpu_count'] == 4
    assert vm['generation'] == 1
    assert vm['state'] == 'Off'


@pytest.mark.parametrize('config', [
    {'name': ''},
    {'name': 'x', 'memory_mb': 16},
    {'name': 'x', 'cpu_count': 0},
    {'name': 'x', 'generation': 3},
])
def test_create_vm_validates_locally(hyperv, fake_host, config):
    with pytest.raises(InvalidParameterError):
        hyperv.create_vm(config)

    assert fake_host.invocations == []


def test_create_vm_rejects_duplicate_name(hyperv, fake_host):
    fake_host.add_vm('web-01')

    with pytest.raises(InvalidParameterError):
        hyperv.create_vm({'name': 'web-01'})


def test_create_vm_defines_system_and_sizes_it(hyperv, fake_host):
    fake_host.invoke_results['DefineSystem'] = {'ReturnValue': 0, 'ResultingSystem': 'vm:new'}
    fake_host.assoc[('vm:new', 'Msvm_VirtualSystemSettingData')] = [{'__PATH': 'vssd:new'}]
    fake_host.vm_items('new', 'Msvm_MemorySettingData', [{'__PATH': 'mem:new'}])
    fake_host.vm_items('new', 'Msvm_ProcessorSettingData', [{'__PATH': 'cpu:new'}])

    result = hyperv.create_vm({'name': 'new', 'memory_mb': 2048, 'cpu_count': 2})

    assert 'criada' in result['message']
    [(_, _, define)] = fake_host.invoked('DefineSystem')
    assert define['SystemSettings']['ElementName'] == 'new'
    assert define['SystemSettings']['VirtualSystemSubType'] == 'Microsoft:Hyper-V:SubType:2'
    [(_, _, modify)] = fake_host.invoked('ModifyResourceSettings')
    assert modify['ResourceSettings'] == [
        {'__PATH': 'mem:new', 'VirtualQuantity': 2048},
        {'__PATH': 'cpu:new', 'VirtualQuantity': 2},
    ]


def test_delete_vm_destroys_system(hyperv, fake_host):
    fake_host.add_vm('old', state=OFF)

    result = hyperv.delete_vm('old')

    assert result['status'] == 'Completed'
    [(path, _, params)] = fake_host.invoked('DestroySystem')
    assert path == 'svc:Msvm_VirtualSystemManagementService'
    assert params == {'AffectedSystem': 'vm:old'}
