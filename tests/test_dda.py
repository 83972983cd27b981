# tests/test_dda.py
import pytest

from nodeagent.errors import (
    InvalidParameterError,
    InvalidStateError,
    MmioNotConfiguredError,
    NotFoundError,
    PermissionDeniedError,
)
from nodeagent.host.base import escape_wql
from nodeagent.hyperv.resources.capabilities import SUBTYPE_PCI_EXPRESS

DEVICE = 'PCI\\VEN_10DE&DEV_1EB8\\4&2B3C4D&0&0010'
PCI_QUERY = f"SELECT * FROM Msvm_PciExpress WHERE DeviceInstancePath = '{escape_wql(DEVICE)}'"
PNP_QUERY = f"SELECT * FROM Win32_PnPEntity WHERE DeviceID = '{escape_wql(DEVICE)}'"
SETTINGS_QUERY = 'SELECT * FROM Msvm_PciExpressSettingData'


@pytest.fixture
def dda_host(fake_host):
    fake_host.add_vm('ml-01', state=3)
    fake_host.add_pool(SUBTYPE_PCI_EXPRESS)
    fake_host.queries[SETTINGS_QUERY] = []
    fake_host.queries[PCI_QUERY] = []
    fake_host.queries[PNP_QUERY] = []
    return fake_host


def mounted(host):
    host.queries[PNP_QUERY] = [{'DeviceID': DEVICE, 'Name': 'NVIDIA Tesla T4'}]


def dismounted(host):
    host.queries[PCI_QUERY] = [{
        '__PATH': 'pci:t4', 'DeviceInstancePath': DEVICE, 'ElementName': 'NVIDIA Tesla T4',
        'LocationPath': 'PCIROOT(0)#PCI(0300)#PCI(0000)',
    }]


def test_device_states(hyperv, dda_host):
    with pytest.raises(NotFoundError):
        hyperv.get_device(DEVICE)

    mounted(dda_host)
    assert hyperv.get_device(DEVICE).status == 'Mounted'

    dismounted(dda_host)
    assert hyperv.get_device(DEVICE).status == 'Dismounted'

    dda_host.queries[SETTINGS_QUERY] = [
        {'InstanceID': 'Microsoft:guid-ml-01\\dev', 'HostResource': ['pci:t4']},
    ]
    dda_host.queries["Caption = 'Virtual Machine'"] = [{'Name': 'guid-ml-01', 'ElementName': 'ml-01'}]
    device = hyperv.get_device(DEVICE)
    assert device.status == 'Assigned'
    assert device.vm_name == 'ml-01'


def test_assign_mounted_device_is_refused(hyperv, dda_host):
    mounted(dda_host)
    hyperv.configure_mmio('ml-01')

    with pytest.raises(PermissionDeniedError):
        hyperv.assign_device('ml-01', DEVICE)

    assert dda_host.invoked('AddResourceSettings') == []


def test_assign_mounted_device_is_refused_before_mmio(hyperv, dda_host):
    mounted(dda_host)

    with pytest.raises(PermissionDeniedError):
        hyperv.assign_device('ml-01', DEVICE)

    assert dda_host.invocations == []


def test_assign_requires_mmio(hyperv, dda_host):
    dismounted(dda_host)

    with pytest.raises(MmioNotConfiguredError):
        hyperv.assign_device('ml-01', DEVICE)

    assert dda_host.invocations == []


def test_configure_mmio_then_assign(hyperv, dda_host):
    dismounted(dda_host)

    hyperv.configure_mmio('ml-01', low_mmio_mb=256, high_mmio_gb=33)
    result = hyperv.assign_device('ml-01', DEVICE)

    [(_, _, mmio)] = dda_host.invoked('ModifySystemSettings')
    assert mmio['SystemSettings'] == {
        '__PATH': 'vssd:ml-01', 'LowMmioGapSize': 256, 'HighMmioGapSize': 33 * 1024,
    }
    [(_, _, params)] = dda_host.invoked('AddResourceSettings')
    assert params['AffectedConfiguration'] == 'vssd:ml-01'
    assert params['ResourceSettings'] == [
        {'__PATH': f"template:{SUBTYPE_PCI_EXPRESS}", 'HostResource': ['pci:t4']},
    ]
    assert result['device'] == DEVICE


def test_vm_with_existing_device_counts_as_configured(hyperv, dda_host):
    dismounted(dda_host)
    dda_host.vm_items('ml-01', 'Msvm_PciExpressSettingData', [{'__PATH': 'pcisd:other'}])

    hyperv.assign_device('ml-01', DEVICE)

    assert len(dda_host.invoked('AddResourceSettings')) == 1


def test_assign_requires_vm_off(hyperv, dda_host):
    dismounted(dda_host)
    dda_host.set_vm_state('ml-01', 2)

    with pytest.raises(InvalidStateError):
        hyperv.assign_device('ml-01', DEVICE)


def test_configure_mmio_validates_sizes(hyperv, dda_host):
    with pytest.raises(InvalidParameterError):
        hyperv.configure_mmio('ml-01', low_mmio_mb=0)

    assert dda_host.invocations == []


def test_dismount_and_mount(hyperv, dda_host):
    mounted(dda_host)
    hyperv.dismount_device(DEVICE)
    [(service, _, params)] = dda_host.invoked('DismountAssignableDevice')
    assert service == 'svc:Msvm_AssignableDeviceService'
    assert params == {'DeviceInstancePath': DEVICE}

    dismounted(dda_host)
    hyperv.mount_device(DEVICE)
    assert len(dda_host.invoked('MountAssignableDevice')) == 1


def test_dismount_already_dismounted(hyperv, dda_host):
    dismounted(dda_host)

    with pytest.raises(InvalidStateError):
        hyperv.dismount_device(DEVICE)


def test_remove_device(hyperv, dda_host):
    dismounted(dda_host)
    dda_host.vm_items('ml-01', 'Msvm_PciExpressSettingData', [
        {'__PATH': 'pcisd:t4', 'InstanceID': 'Microsoft:guid-ml-01\\t4', 'HostResource': ['pci:t4']},
    ])

    hyperv.remove_device('ml-01', DEVICE)

    [(_, _, params)] = dda_host.invoked('RemoveResourceSettings')
    assert params['ResourceSettings'] == ['pcisd:t4']
