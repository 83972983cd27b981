from nodeagent.errors import InvalidParameterError, InvalidStateError, NotFoundError
from nodeagent.handles import open_handle
from nodeagent.host.base import KIND_VHD
from nodeagent.models import VhdInfo

from .capabilities import SUBTYPE_DISK_DRIVE, SUBTYPE_SCSI_CONTROLLER, SUBTYPE_VIRTUAL_DISK

GB = 1024 * 1024 * 1024
MAX_VHDX_SIZE_GB = 64 * 1024
MAX_VHD_SIZE_GB = 2040
SCSI_SLOTS = 64

VHD_FORMATS = {'VHD': 2, 'VHDX': 3}
VHD_TYPES = {'Fixed': 2, 'Dynamic': 3}


class StorageManager:
    """Mixin de discos virtuais (VHD/VHDX) e anexação a VMs."""

    def get_vhd(self, path):
        with open_handle(self.connection, self.root, KIND_VHD, path) as handle:
            service = self._get_service('Msvm_ImageManagementService')
            outcome = self.connection.invoke(service, 'GetVirtualHardDiskSettingData', Path=handle.raw)
            submission = self._submit(outcome, f"inspect VHD '{path}'", wait=True)
            outcome = self.connection.invoke(service, 'GetVirtualHardDiskState', Path=handle.raw)
            state = self._submit(outcome, f"inspect VHD state '{path}'", wait=True).result

        settings = submission.result.get('SettingData') or {}
        file_size = (state.get('State') or {}).get('FileSize')
        return VhdInfo.from_wmi(settings, file_size=file_size).to_dict()

    def create_vhd(self, path, size_gb, disk_type='Dynamic', disk_format=None, wait=False, timeout=None):
        if not path or not path.lower().endswith(('.vhd', '.vhdx')):
            raise InvalidParameterError("O caminho do disco deve terminar em .vhd ou .vhdx.")
        if disk_format is None:
            disk_format = 'VHDX' if path.lower().endswith('.vhdx') else 'VHD'
        if disk_format not in VHD_FORMATS:
            raise InvalidParameterError(f"Formato inválido: {disk_format}.")
        if disk_type not in VHD_TYPES:
            raise InvalidParameterError(f"Tipo inválido: {disk_type}.")

        max_size = MAX_VHDX_SIZE_GB if disk_format == 'VHDX' else MAX_VHD_SIZE_GB
        if not isinstance(size_gb, int) or not 1 <= size_gb <= max_size:
            raise InvalidParameterError(f"size_gb deve estar entre 1 e {max_size}.")

        service = self._get_service('Msvm_ImageManagementService')
        outcome = self.connection.invoke(
            service, 'CreateVirtualHardDisk',
            VirtualDiskSettingData={
                '__CLASS': 'Msvm_VirtualHardDiskSettingData',
                'Path': path,
                'MaxInternalSize': size_gb * GB,
                'Type': VHD_TYPES[disk_type],
                'Format': VHD_FORMATS[disk_format],
            },
        )
        submission = self._submit(outcome, f"create VHD '{path}'", wait, timeout)
        self.logger.info(f"VHD '{path}' ({size_gb} GB {disk_type}): {submission.status}")
        return dict(submission.to_dict(), path=path)

    def get_vm_disks(self, vm_name):
        with self.open_vm(vm_name) as vm:
            disks = self._get_vm_resources(
                vm.raw, 'Msvm_StorageAllocationSettingData', SUBTYPE_VIRTUAL_DISK
            )
        data = [
            {'path': (d.get('HostResource') or [None])[0], 'drive': d.get('Parent')}
            for d in disks
        ]
        return {'data': data, 'count': len(data)}

    def _free_scsi_slot(self, vm_path, controller_path):
        drives = self._get_vm_resources(vm_path, 'Msvm_ResourceAllocationSettingData', SUBTYPE_DISK_DRIVE)
        used = {
            int(d.get('AddressOnParent') or 0)
            for d in drives if d.get('Parent') == controller_path
        }
        for slot in range(SCSI_SLOTS):
            if slot not in used:
                return slot
        return None

    def attach_vhd(self, vm_name, path, timeout=None):
        """
        Anexa um VHD existente à VM: controlador SCSI (criado se necessário),
        drive sintético e disco virtual, nesta ordem.
        Todos os templates são negociados antes da primeira alteração na VM.
        """
        open_handle(self.connection, self.root, KIND_VHD, path).close()

        negotiator = self.negotiator
        drive_template = negotiator.build_settings(SUBTYPE_DISK_DRIVE)
        disk_template = negotiator.build_settings(SUBTYPE_VIRTUAL_DISK)

        with self.open_vm(vm_name) as vm:
            controllers = self._get_vm_resources(
                vm.raw, 'Msvm_ResourceAllocationSettingData', SUBTYPE_SCSI_CONTROLLER
            )
            # Itens criados nesta chamada, removidos em ordem inversa se um passo falhar
            created = []
            try:
                if controllers:
                    controller_path = controllers[0]['__PATH']
                else:
                    controller_path = self._add_single_resource(
                        vm.raw, negotiator.build_settings(SUBTYPE_SCSI_CONTROLLER),
                        'Msvm_ResourceAllocationSettingData',
                        f"add SCSI controller to VM '{vm_name}'", timeout=timeout,
                    )
                    created.append(controller_path)

                slot = self._free_scsi_slot(vm.raw, controller_path)
                if slot is None:
                    raise InvalidStateError(f"Controlador SCSI da VM '{vm_name}' sem slots livres.")

                drive_settings = dict(drive_template, Parent=controller_path, AddressOnParent=str(slot))
                drive_path = self._add_single_resource(
                    vm.raw, drive_settings, 'Msvm_ResourceAllocationSettingData',
                    f"add disk drive to VM '{vm_name}'", timeout=timeout,
                )
                created.append(drive_path)

                disk_settings = dict(disk_template, Parent=drive_path, HostResource=[path])
                self._add_resource_settings(
                    vm.raw, disk_settings, f"attach VHD '{path}' to VM '{vm_name}'", timeout=timeout
                )
            except Exception:
                if created:
                    self.logger.warning(
                        f"Falha ao anexar '{path}', removendo itens criados na VM '{vm_name}': {created}"
                    )
                    self._remove_resource_settings(created[::-1], f"rollback attach on VM '{vm_name}'")
                raise

        self.logger.info(f"VHD '{path}' anexado à VM '{vm_name}' (SCSI slot {slot}).")
        return {'message': f"VHD '{path}' anexado à VM '{vm_name}'.", 'slot': slot}

    def detach_vhd(self, vm_name, path, timeout=None):
        with self.open_vm(vm_name) as vm:
            disks = self._get_vm_resources(
                vm.raw, 'Msvm_StorageAllocationSettingData', SUBTYPE_VIRTUAL_DISK
            )
            matches = [
                d for d in disks
                if path.lower() in [p.lower() for p in (d.get('HostResource') or [])]
            ]
            if not matches:
                raise NotFoundError(f"VHD '{path}' não está anexado à VM '{vm_name}'.")

            disk = matches[0]
            paths = [disk['__PATH']]
            if disk.get('Parent'):
                paths.append(disk['Parent'])
            self._remove_resource_settings(paths, f"detach VHD '{path}' from VM '{vm_name}'",
                                           timeout=timeout)

        return {'message': f"VHD '{path}' removido da VM '{vm_name}'."}
