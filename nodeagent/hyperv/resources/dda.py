from nodeagent.errors import (
    InvalidParameterError,
    InvalidStateError,
    MmioNotConfiguredError,
    NotFoundError,
    PermissionDeniedError,
)
from nodeagent.host.base import escape_wql
from nodeagent.models import AssignableDevice

from .capabilities import SUBTYPE_PCI_EXPRESS
from .gpu import CIMV2

DEFAULT_LOW_MMIO_MB = 128
DEFAULT_HIGH_MMIO_GB = 32
MAX_LOW_MMIO_MB = 3 * 1024
MAX_HIGH_MMIO_GB = 64 * 1024


class DDAManager:
    """
    Mixin de Discrete Device Assignment.
    Dispositivos são identificados pelo device instance path (PCI\\VEN_...).
    """

    def _assigned_settings(self):
        return self.connection.query("SELECT * FROM Msvm_PciExpressSettingData")

    def _vm_names_by_id(self):
        vms = self.connection.query(
            "SELECT * FROM Msvm_ComputerSystem WHERE Caption = 'Virtual Machine'"
        )
        return {vm.get('Name'): vm.get('ElementName') for vm in vms}

    def _owner_of(self, device_path, settings, vm_names):
        """VM que usa o dispositivo, a partir do InstanceID 'Microsoft:<VM GUID>\\...'."""
        for item in settings:
            if device_path in (item.get('HostResource') or []):
                instance_id = item.get('InstanceID') or ''
                vm_id = instance_id.split(':', 1)[-1].split('\\', 1)[0]
                return vm_names.get(vm_id, vm_id)
        return None

    def _device_from_pci(self, data, settings, vm_names):
        owner = self._owner_of(data['__PATH'], settings, vm_names)
        return AssignableDevice(
            instance_path=data.get('DeviceInstancePath'),
            name=data.get('ElementName'),
            status=AssignableDevice.ASSIGNED if owner else AssignableDevice.DISMOUNTED,
            location_path=data.get('LocationPath'),
            vm_name=owner,
            path=data['__PATH'],
        )

    def get_assignable_devices(self):
        """Dispositivos desmontados do host (livres ou já atribuídos a uma VM)."""
        settings = self._assigned_settings()
        vm_names = self._vm_names_by_id()
        devices = [
            self._device_from_pci(d, settings, vm_names).to_dict()
            for d in self.connection.query("SELECT * FROM Msvm_PciExpress")
        ]
        return {'data': devices, 'count': len(devices)}

    def get_device(self, instance_path):
        if not instance_path:
            raise InvalidParameterError("instance_path é obrigatório.")
        key = escape_wql(instance_path)

        pci = self.connection.query(
            f"SELECT * FROM Msvm_PciExpress WHERE DeviceInstancePath = '{key}'"
        )
        if pci:
            return self._device_from_pci(pci[0], self._assigned_settings(), self._vm_names_by_id())

        # Ainda montado: o host continua enxergando o dispositivo como PnP
        pnp = self.connection.query(
            f"SELECT * FROM Win32_PnPEntity WHERE DeviceID = '{key}'", namespace=CIMV2
        )
        if pnp:
            return AssignableDevice(
                instance_path=instance_path,
                name=pnp[0].get('Name'),
                status=AssignableDevice.MOUNTED,
            )

        raise NotFoundError(f"Dispositivo '{instance_path}' não encontrado.")

    def get_vm_devices(self, vm_name):
        with self.open_vm(vm_name) as vm:
            items = self._get_vm_resources(vm.raw, 'Msvm_PciExpressSettingData')
        data = [
            {'id': i.get('InstanceID'), 'device': (i.get('HostResource') or [None])[0]}
            for i in items
        ]
        return {'data': data, 'count': len(data)}

    # --- Host ---

    def dismount_device(self, instance_path, wait=False, timeout=None):
        device = self.get_device(instance_path)
        if device.status != AssignableDevice.MOUNTED:
            raise InvalidStateError(f"Dispositivo '{instance_path}' já está desmontado do host.")

        service = self._get_service('Msvm_AssignableDeviceService')
        outcome = self.connection.invoke(
            service, 'DismountAssignableDevice', DeviceInstancePath=instance_path
        )
        submission = self._submit(outcome, f"dismount device '{instance_path}'", wait, timeout)
        self.logger.info(f"Dispositivo '{instance_path}' desmontado do host: {submission.status}")
        return dict(submission.to_dict(), device=instance_path)

    def mount_device(self, instance_path, wait=False, timeout=None):
        device = self.get_device(instance_path)
        if device.status == AssignableDevice.MOUNTED:
            raise InvalidStateError(f"Dispositivo '{instance_path}' já está montado no host.")
        if device.status == AssignableDevice.ASSIGNED:
            raise InvalidStateError(
                f"Dispositivo '{instance_path}' está atribuído à VM '{device.vm_name}'."
            )

        service = self._get_service('Msvm_AssignableDeviceService')
        outcome = self.connection.invoke(
            service, 'MountAssignableDevice', DeviceInstancePath=instance_path
        )
        submission = self._submit(outcome, f"mount device '{instance_path}'", wait, timeout)
        return dict(submission.to_dict(), device=instance_path)

    # --- VM ---

    def configure_mmio(self, vm_name, low_mmio_mb=DEFAULT_LOW_MMIO_MB,
                       high_mmio_gb=DEFAULT_HIGH_MMIO_GB, timeout=None):
        """Define os gaps de MMIO baixo/alto da VM. Pré-requisito para o primeiro DDA."""
        if not isinstance(low_mmio_mb, int) or not 1 <= low_mmio_mb <= MAX_LOW_MMIO_MB:
            raise InvalidParameterError(f"low_mmio_mb deve estar entre 1 e {MAX_LOW_MMIO_MB}.")
        if not isinstance(high_mmio_gb, int) or not 1 <= high_mmio_gb <= MAX_HIGH_MMIO_GB:
            raise InvalidParameterError(f"high_mmio_gb deve estar entre 1 e {MAX_HIGH_MMIO_GB}.")

        with self.open_vm(vm_name) as vm:
            self._require_vm_off(vm, 'configurar MMIO')
            vssd = self._get_vm_settings(vm.raw)
            vsms = self._get_service('Msvm_VirtualSystemManagementService')
            outcome = self.connection.invoke(
                vsms, 'ModifySystemSettings',
                SystemSettings={
                    '__PATH': vssd['__PATH'],
                    'LowMmioGapSize': low_mmio_mb,
                    'HighMmioGapSize': high_mmio_gb * 1024,
                },
            )
            self._submit(outcome, f"configure MMIO on VM '{vm_name}'", wait=True, timeout=timeout)
            vm_id = self.connection.get_object(vm.raw).get('Name')

        self._mmio_configured.add(vm_id)
        self.logger.info(f"VM '{vm_name}': MMIO {low_mmio_mb} MB / {high_mmio_gb} GB.")
        return {'message': f"MMIO configurado na VM '{vm_name}'.",
                'low_mmio_mb': low_mmio_mb, 'high_mmio_gb': high_mmio_gb}

    def _mmio_ready(self, vm_path):
        vm_id = self.connection.get_object(vm_path).get('Name')
        if vm_id in self._mmio_configured:
            return True
        # Uma VM que já recebeu um DDA teve o MMIO configurado antes
        return bool(self._get_vm_resources(vm_path, 'Msvm_PciExpressSettingData'))

    def assign_device(self, vm_name, instance_path, timeout=None):
        """
        Atribui um dispositivo desmontado à VM.
        Um dispositivo ainda montado no host é recusado: o dismount nunca é implícito.
        """
        with self.open_vm(vm_name) as vm:
            device = self.get_device(instance_path)
            if device.status == AssignableDevice.MOUNTED:
                raise PermissionDeniedError(
                    f"Dispositivo '{instance_path}' ainda está montado no host. Faça o dismount antes."
                )
            if device.status == AssignableDevice.ASSIGNED:
                raise InvalidStateError(
                    f"Dispositivo '{instance_path}' já está atribuído à VM '{device.vm_name}'."
                )

            self._require_vm_off(vm, 'atribuir um dispositivo')
            if not self._mmio_ready(vm.raw):
                raise MmioNotConfiguredError(
                    f"Configure o MMIO da VM '{vm_name}' antes de atribuir dispositivos."
                )

            settings = self.negotiator.build_settings(
                SUBTYPE_PCI_EXPRESS, {'HostResource': [device.path]}
            )
            submission = self._add_resource_settings(
                vm.raw, settings, f"assign device '{instance_path}' to VM '{vm_name}'",
                timeout=timeout,
            )

        self.logger.info(f"Dispositivo '{instance_path}' atribuído à VM '{vm_name}'.")
        return dict(submission.to_dict(), device=instance_path, vm=vm_name)

    def remove_device(self, vm_name, instance_path, timeout=None):
        with self.open_vm(vm_name) as vm:
            self._require_vm_off(vm, 'remover um dispositivo')
            device = self.get_device(instance_path)
            items = [
                i for i in self._get_vm_resources(vm.raw, 'Msvm_PciExpressSettingData')
                if device.path and device.path in (i.get('HostResource') or [])
            ]
            if not items:
                raise NotFoundError(
                    f"Dispositivo '{instance_path}' não está atribuído à VM '{vm_name}'."
                )
            submission = self._remove_resource_settings(
                [i['__PATH'] for i in items],
                f"remove device '{instance_path}' from VM '{vm_name}'", timeout=timeout,
            )

        return dict(submission.to_dict(), device=instance_path, vm=vm_name)
