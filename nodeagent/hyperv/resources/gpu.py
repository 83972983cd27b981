from nodeagent.errors import (
    CapacityExceededError,
    InvalidParameterError,
    InvalidStateError,
    NotFoundError,
)
from nodeagent.models import GpuInfo, GpuPartition, VmState

from .capabilities import SUBTYPE_GPU_PARTITION

CIMV2 = 'root\\cimv2'


def _device_key(pnp_device_id):
    """PCI\\VEN_..\\4&.. -> PCI#VEN_..#4&.. (formato usado em Msvm_PartitionableGpu.Name)."""
    return (pnp_device_id or '').replace('\\', '#').upper()


class GPUManager:
    """Mixin de inventário de GPUs e partições (GPU-P)."""

    def _inventory(self):
        controllers = self.connection.query(
            "SELECT * FROM Win32_VideoController", namespace=CIMV2
        )
        partitionable = self.connection.query("SELECT * FROM Msvm_PartitionableGpu")

        gpus = []
        for controller in controllers:
            device_id = controller.get('PNPDeviceID')
            key = _device_key(device_id)
            match = next(
                (p for p in partitionable if key and key in (p.get('Name') or '').upper()), None
            )
            gpu = GpuInfo(
                device_instance_id=device_id,
                name=controller.get('Name'),
                manufacturer=controller.get('AdapterCompatibility'),
                driver_version=controller.get('DriverVersion'),
                supports_partitioning=match is not None,
            )
            if match is not None:
                gpu.partition_path = match.get('__PATH')
                gpu.partition_count = int(match.get('PartitionCount') or 0)
                gpu.total_vram = int(match.get('TotalVRAM') or 0)
                gpu.available_vram = int(match.get('AvailableVRAM') or 0)
                gpu.min_partition_vram = int(match.get('MinPartitionVRAM') or 0)
                gpu.max_partition_vram = int(match.get('MaxPartitionVRAM') or 0)
                gpu.optimal_partition_vram = int(match.get('OptimalPartitionVRAM') or 0)
            gpus.append(gpu)
        return gpus

    def list_gpus(self):
        gpus = [g.to_dict() for g in self._inventory()]
        return {'data': gpus, 'count': len(gpus)}

    def list_partitionable_gpus(self):
        gpus = [g.to_dict() for g in self._inventory() if g.supports_partitioning]
        return {'data': gpus, 'count': len(gpus)}

    def _partitions_in_use(self, gpu):
        # Apenas o VSSD ativo de cada VM; checkpoints guardam cópias das mesmas partições
        in_use = 0
        for handle in self.iter_vms():
            with handle:
                try:
                    partitions = self._get_vm_resources(handle.raw, 'Msvm_GpuPartitionSettingData')
                except NotFoundError:
                    self.logger.debug(f"VM {handle.raw} removida durante a contagem de partições.")
                    continue
            in_use += sum(1 for p in partitions if gpu.partition_path in (p.get('HostResource') or []))
        return in_use

    def _select_gpu(self, gpu_id=None):
        inventory = self._inventory()
        if gpu_id:
            gpu = next((g for g in inventory if g.device_instance_id == gpu_id), None)
            if gpu is None:
                raise NotFoundError(f"GPU '{gpu_id}' não encontrada.")
            if not gpu.supports_partitioning:
                raise InvalidParameterError(f"GPU '{gpu.name}' não suporta particionamento.")
            return gpu

        candidates = [g for g in inventory if g.supports_partitioning]
        if not candidates:
            raise NotFoundError("Nenhuma GPU particionável encontrada no host.")
        return candidates[0]

    def _check_capacity(self, gpu, min_vram):
        in_use = self._partitions_in_use(gpu)
        if gpu.partition_count and in_use >= gpu.partition_count:
            raise CapacityExceededError(
                f"GPU '{gpu.name}' sem partições livres ({in_use}/{gpu.partition_count})."
            )
        if min_vram and min_vram > gpu.available_vram:
            raise CapacityExceededError(
                f"GPU '{gpu.name}': VRAM solicitada ({min_vram}) excede a disponível "
                f"({gpu.available_vram})."
            )

    def _require_vm_off(self, handle, operation):
        state = VmState.decode(handle.state()[0])
        if state.name != VmState.OFF:
            raise InvalidStateError(
                f"A VM '{handle.name}' precisa estar desligada para {operation} (estado atual: {state})."
            )

    def get_vm_gpu_partitions(self, vm_name):
        with self.open_vm(vm_name) as vm:
            items = self._get_vm_resources(vm.raw, 'Msvm_GpuPartitionSettingData')
        partitions = [GpuPartition.from_wmi(i, vm_name).to_dict() for i in items]
        return {'data': partitions, 'count': len(partitions)}

    def add_gpu_partition(self, vm_name, gpu_id=None, min_vram=None, max_vram=None,
                          optimal_vram=None, timeout=None):
        bounds = {'min_vram': min_vram, 'max_vram': max_vram, 'optimal_vram': optimal_vram}
        for field, value in bounds.items():
            if value is not None and (not isinstance(value, int) or value < 0):
                raise InvalidParameterError(f"{field} deve ser um inteiro não negativo (bytes).")
        given = [v for v in (min_vram, optimal_vram, max_vram) if v is not None]
        if given != sorted(given):
            raise InvalidParameterError("É preciso que min_vram <= optimal_vram <= max_vram.")

        with self.open_vm(vm_name) as vm:
            self._require_vm_off(vm, 'adicionar uma partição de GPU')

            gpu = self._select_gpu(gpu_id)
            self._check_capacity(gpu, min_vram)

            overrides = {'HostResource': [gpu.partition_path]}
            if min_vram is not None:
                overrides['MinPartitionVRAM'] = min_vram
            if max_vram is not None:
                overrides['MaxPartitionVRAM'] = max_vram
            if optimal_vram is not None:
                overrides['OptimalPartitionVRAM'] = optimal_vram

            settings = self.negotiator.build_settings(SUBTYPE_GPU_PARTITION, overrides)
            submission = self._add_resource_settings(
                vm.raw, settings, f"add GPU partition to VM '{vm_name}'", timeout=timeout
            )

        self.logger.info(f"Partição da GPU '{gpu.name}' adicionada à VM '{vm_name}'.")
        return dict(submission.to_dict(), gpu=gpu.device_instance_id, vm=vm_name)

    def remove_gpu_partition(self, vm_name, partition_id=None, timeout=None):
        """Remove a partição informada ou, sem partition_id, todas as partições da VM."""
        with self.open_vm(vm_name) as vm:
            self._require_vm_off(vm, 'remover uma partição de GPU')

            items = self._get_vm_resources(vm.raw, 'Msvm_GpuPartitionSettingData')
            if partition_id:
                items = [i for i in items if i.get('InstanceID') == partition_id]
            if not items:
                raise NotFoundError(f"Nenhuma partição de GPU encontrada na VM '{vm_name}'.")

            submission = self._remove_resource_settings(
                [i['__PATH'] for i in items], f"remove GPU partition from VM '{vm_name}'",
                timeout=timeout,
            )

        return dict(submission.to_dict(), removed=len(items), vm=vm_name)
