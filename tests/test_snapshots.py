# tests/test_snapshots.py
import pytest

from nodeagent.errors import InvalidStateError, NotFoundError, OperationFailedError
from nodeagent.host.base import KIND_SNAPSHOT

SNAPSHOT_SERVICE = 'svc:Msvm_VirtualSystemSnapshotService'


@pytest.fixture
def vm_with_snapshot(fake_host):
    raw = fake_host.add_vm('db-01', state=3)
    fake_host.add(raw, KIND_SNAPSHOT, 'antes-do-deploy', obj={
        'InstanceID': 'Microsoft:snap-1',
        'ElementName': 'antes-do-deploy',
        'CreationTime': '20260101120000.000000-000',
    })
    return raw


def test_create_snapshot_success(hyperv, fake_host):
    """Cria o snapshot, aguarda o job e aplica o nome pedido."""
    fake_host.add_vm('db-01', state=2)

    # 1. O host devolve um job; o snapshot só é conhecido pelos elementos afetados
    fake_host.invoke_results['CreateSnapshot'] = {
        'ReturnValue': 4096, 'Job': 'job:snap', 'ResultingSnapshot': None,
    }
    fake_host.objects['job:snap'] = {'JobState': 7}
    fake_host.assoc[('job:snap', 'Msvm_VirtualSystemSettingData')] = [
        {'__PATH': 'vssd:db-01', 'VirtualSystemType': 'Microsoft:Hyper-V:System:Realized'},
        {'__PATH': 'snapshot:new', 'VirtualSystemType': 'Microsoft:Hyper-V:Snapshot:Realized'},
    ]

    # 2. Ação
    result = hyperv.create_snapshot('db-01', 'snap-01')

    # 3. Asserts
    [(service, _, params)] = fake_host.invoked('CreateSnapshot')
    assert service == SNAPSHOT_SERVICE
    assert params['AffectedSystem'] == 'vm:db-01'
    [(_, _, rename)] = fake_host.invoked('ModifySystemSettings')
    assert rename['SystemSettings'] == {'__PATH': 'snapshot:new', 'ElementName': 'snap-01'}
    assert "criado" in result['message']


def test_create_snapshot_immediate_result(hyperv, fake_host):
    fake_host.add_vm('db-01', state=2)
    fake_host.invoke_results['CreateSnapshot'] = {'ReturnValue': 0, 'ResultingSnapshot': 'snapshot:now'}

    hyperv.create_snapshot('db-01', 'snap-01')

    [(_, _, rename)] = fake_host.invoked('ModifySystemSettings')
    assert rename['SystemSettings']['__PATH'] == 'snapshot:now'


def test_create_snapshot_unresolved_name_is_an_error(hyperv, fake_host):
    fake_host.add_vm('db-01', state=2)
    fake_host.invoke_results['CreateSnapshot'] = {'ReturnValue': 4096, 'Job': 'job:snap'}
    fake_host.objects['job:snap'] = {'JobState': 7}

    with pytest.raises(OperationFailedError):
        hyperv.create_snapshot('db-01', 'snap-01')

    assert fake_host.invoked('ModifySystemSettings') == []


def test_create_snapshot_failed_job_skips_rename(hyperv, fake_host):
    fake_host.add_vm('db-01', state=2)
    fake_host.invoke_results['CreateSnapshot'] = {'ReturnValue': 4096, 'Job': 'job:snap'}
    fake_host.objects['job:snap'] = {'JobState': 10, 'ErrorCode': 32779, 'ErrorDescription': 'disco ausente'}

    with pytest.raises(NotFoundError) as exc:
        hyperv.create_snapshot('db-01', 'snap-01')

    assert exc.value.description == 'disco ausente'
    assert fake_host.invoked('ModifySystemSettings') == []


def test_list_snapshots(hyperv, vm_with_snapshot):
    result = hyperv.get_snapshots('db-01')

    assert result['count'] == 1
    assert result['data'][0]['name'] == 'antes-do-deploy'
    assert result['data'][0]['vm'] == 'db-01'


def test_apply_snapshot_on_stopped_vm(hyperv, fake_host, vm_with_snapshot):
    result = hyperv.apply_snapshot('db-01', 'antes-do-deploy')

    assert result['status'] == 'Completed'
    [(service, _, params)] = fake_host.invoked('ApplySnapshot')
    assert service == SNAPSHOT_SERVICE
    assert params == {'Snapshot': 'snapshot:antes-do-deploy'}


def test_apply_snapshot_requires_vm_off_or_saved(hyperv, fake_host, vm_with_snapshot):
    fake_host.set_vm_state('db-01', 2)

    with pytest.raises(InvalidStateError):
        hyperv.apply_snapshot('db-01', 'antes-do-deploy')

    assert fake_host.invocations == []


def test_apply_unknown_snapshot(hyperv, vm_with_snapshot):
    with pytest.raises(NotFoundError):
        hyperv.apply_snapshot('db-01', 'inexistente')


def test_delete_snapshot(hyperv, fake_host, vm_with_snapshot):
    result = hyperv.delete_snapshot('db-01', 'antes-do-deploy')

    assert "excluído" in result['message']
    [(_, _, params)] = fake_host.invoked('DestroySnapshot')
    assert params == {'AffectedSnapshot': 'snapshot:antes-do-deploy'}
    assert 'snapshot:antes-do-deploy' in fake_host.closed
