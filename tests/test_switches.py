# tests/test_switches.py
import pytest

from nodeagent.errors import InvalidParameterError, NotFoundError
from nodeagent.host.base import KIND_SWITCH


def test_create_private_switch(hyperv, fake_host):
    result = hyperv.create_switch('isolada', notes='rede de testes')

    assert result['status'] == 'Completed'
    [(service, _, params)] = fake_host.invoked('DefineSystem')
    assert service == 'svc:Msvm_VirtualEthernetSwitchManagementService'
    assert params['SystemSettings']['ElementName'] == 'isolada'
    assert params['SystemSettings']['Notes'] == ['rede de testes']
    # Switch privado: nenhuma porta conectada
    assert params['ResourceSettings'] == []


def test_create_switch_rejects_duplicates(hyperv, fake_host):
    fake_host.add('host', KIND_SWITCH, 'isolada', obj={'Name': 'sw-1', 'ElementName': 'isolada'})

    with pytest.raises(InvalidParameterError):
        hyperv.create_switch('isolada')

    assert fake_host.invocations == []


def test_list_and_delete_switch(hyperv, fake_host):
    fake_host.add('host', KIND_SWITCH, 'isolada', obj={'Name': 'sw-1', 'ElementName': 'isolada'})

    assert hyperv.get_switches()['data'] == [{'id': 'sw-1', 'name': 'isolada', 'notes': None}]

    hyperv.delete_switch('isolada')
    [(_, _, params)] = fake_host.invoked('DestroySystem')
    assert params == {'AffectedSystem': 'switch:isolada'}


def test_delete_missing_switch(hyperv):
    with pytest.raises(NotFoundError):
        hyperv.delete_switch('fantasma')
