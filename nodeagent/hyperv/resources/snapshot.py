from nodeagent.errors import InvalidStateError, OperationFailedError
from nodeagent.handles import enumerate_handles, open_handle
from nodeagent.host.base import KIND_SNAPSHOT
from nodeagent.models import Snapshot, VmState

# Msvm_VirtualSystemSnapshotService.CreateSnapshot: 2 = snapshot completo
SNAPSHOT_TYPE_FULL = 2

APPLY_STATES = {VmState.OFF, VmState.SAVED}


class SnapshotManager:
    """Mixin para gerenciamento de Snapshots (checkpoints) das VMs."""

    def _open_snapshot(self, vm_handle, snapname):
        return open_handle(self.connection, vm_handle.raw, KIND_SNAPSHOT, snapname)

    def get_snapshots(self, vm_name):
        snapshots = []
        with self.open_vm(vm_name) as vm:
            for handle in enumerate_handles(self.connection, vm.raw, KIND_SNAPSHOT):
                with handle:
                    data = self.connection.get_object(handle.raw)
                if data is not None:
                    snapshots.append(Snapshot.from_wmi(data, vm_name).to_dict())
        return {'data': snapshots, 'count': len(snapshots)}

    def get_snapshot(self, vm_name, snapname):
        with self.open_vm(vm_name) as vm, self._open_snapshot(vm, snapname) as snap:
            data = self.connection.get_object(snap.raw)
        return Snapshot.from_wmi(data, vm_name).to_dict()

    def _snapshot_from_job(self, job):
        """Snapshot produzido pelo job; ResultingSnapshot não vem preenchido nesse caso."""
        settings = self.connection.associators(
            job.path,
            assoc_class='Msvm_AffectedJobElement',
            result_class='Msvm_VirtualSystemSettingData',
        )
        for item in settings:
            if 'Snapshot' in (item.get('VirtualSystemType') or ''):
                return item['__PATH']
        return None

    def create_snapshot(self, vm_name, snapname=None, timeout=None):
        service = self._get_service('Msvm_VirtualSystemSnapshotService')
        with self.open_vm(vm_name) as vm:
            outcome = self.connection.invoke(
                service, 'CreateSnapshot',
                AffectedSystem=vm.raw,
                SnapshotSettings='',
                SnapshotType=SNAPSHOT_TYPE_FULL,
            )
        # O nome só pode ser aplicado depois que o snapshot existir
        submission = self._submit(outcome, f"snapshot VM '{vm_name}'", wait=True, timeout=timeout)
        snapshot_path = submission.result.get('ResultingSnapshot')
        if not snapshot_path and submission.job is not None:
            snapshot_path = self._snapshot_from_job(submission.job)

        if snapname:
            if not snapshot_path:
                raise OperationFailedError(
                    f"Snapshot da VM '{vm_name}' criado, mas não localizado para aplicar o nome '{snapname}'."
                )
            vsms = self._get_service('Msvm_VirtualSystemManagementService')
            outcome = self.connection.invoke(
                vsms, 'ModifySystemSettings',
                SystemSettings={'__PATH': snapshot_path, 'ElementName': snapname},
            )
            self._submit(outcome, f"rename snapshot '{snapname}'", wait=True, timeout=timeout)

        self.logger.info(f"Snapshot '{snapname}' criado para a VM '{vm_name}'.")
        return {'message': f"Snapshot '{snapname or snapshot_path}' criado."}

    def apply_snapshot(self, vm_name, snapname, wait=False, timeout=None):
        service = self._get_service('Msvm_VirtualSystemSnapshotService')
        with self.open_vm(vm_name) as vm:
            state = VmState.decode(vm.state()[0])
            if state.name not in APPLY_STATES:
                raise InvalidStateError(
                    f"A VM '{vm_name}' precisa estar desligada ou salva para aplicar um snapshot "
                    f"(estado atual: {state})."
                )
            with self._open_snapshot(vm, snapname) as snap:
                outcome = self.connection.invoke(service, 'ApplySnapshot', Snapshot=snap.raw)

        submission = self._submit(outcome, f"apply snapshot '{snapname}'", wait, timeout)
        return dict(submission.to_dict(), message=f"Rollback para '{snapname}' submetido.")

    def delete_snapshot(self, vm_name, snapname, wait=False, timeout=None):
        service = self._get_service('Msvm_VirtualSystemSnapshotService')
        with self.open_vm(vm_name) as vm, self._open_snapshot(vm, snapname) as snap:
            outcome = self.connection.invoke(service, 'DestroySnapshot', AffectedSnapshot=snap.raw)

        submission = self._submit(outcome, f"delete snapshot '{snapname}'", wait, timeout)
        return dict(submission.to_dict(), message=f"Snapshot '{snapname}' excluído.")
