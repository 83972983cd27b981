from .state import VmState

MB = 1024 * 1024


class VirtualMachine:
    def __init__(self, id, name, state, path=None, uptime_ms=0, memory_mb=None, cpu_count=None,
                 generation=None):
        self.id = id
        self.name = name
        self.state = state
        self.path = path
        self.uptime_ms = uptime_ms
        self.memory_mb = memory_mb
        self.cpu_count = cpu_count
        self.generation = generation

    @classmethod
    def from_wmi(cls, data):
        """Monta a partir de um Msvm_ComputerSystem."""
        return cls(
            id=data.get('Name'),
            name=data.get('ElementName'),
            state=VmState.decode(data.get('EnabledState')),
            path=data.get('__PATH'),
            uptime_ms=int(data.get('OnTimeInMilliseconds') or 0),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'state': str(self.state),
            'state_code': self.state.code,
            'uptime_ms': self.uptime_ms,
            'memory_mb': self.memory_mb,
            'cpu_count': self.cpu_count,
            'generation': self.generation,
        }


class Snapshot:
    def __init__(self, id, name, vm_name, path=None, created=None, parent=None):
        self.id = id
        self.name = name
        self.vm_name = vm_name
        self.path = path
        self.created = created
        self.parent = parent

    @classmethod
    def from_wmi(cls, data, vm_name):
        # Msvm_VirtualSystemSettingData com VirtualSystemType de snapshot
        return cls(
            id=data.get('InstanceID'),
            name=data.get('ElementName'),
            vm_name=vm_name,
            path=data.get('__PATH'),
            created=data.get('CreationTime'),
            parent=data.get('Parent'),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'vm': self.vm_name,
            'created': self.created,
            'parent': self.parent,
        }


class VirtualSwitch:
    def __init__(self, id, name, path=None, notes=None):
        self.id = id
        self.name = name
        self.path = path
        self.notes = notes

    @classmethod
    def from_wmi(cls, data):
        return cls(
            id=data.get('Name'),
            name=data.get('ElementName'),
            path=data.get('__PATH'),
            notes=data.get('Description'),
        )

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'notes': self.notes}


class VhdInfo:
    # Msvm_VirtualHardDiskSettingData.Format / Type
    FORMATS = {2: 'VHD', 3: 'VHDX', 4: 'VHDSet'}
    TYPES = {2: 'Fixed', 3: 'Dynamic', 4: 'Differencing'}

    def __init__(self, path, format, type, max_size, file_size=None, parent=None):
        self.path = path
        self.format = format
        self.type = type
        self.max_size = max_size
        self.file_size = file_size
        self.parent = parent

    @classmethod
    def from_wmi(cls, data, file_size=None):
        return cls(
            path=data.get('Path'),
            format=cls.FORMATS.get(data.get('Format'), 'Unknown'),
            type=cls.TYPES.get(data.get('Type'), 'Unknown'),
            max_size=int(data.get('MaxInternalSize') or 0),
            file_size=file_size,
            parent=data.get('ParentPath') or None,
        )

    def to_dict(self):
        return {
            'path': self.path,
            'format': self.format,
            'type': self.type,
            'max_size': self.max_size,
            'file_size': self.file_size,
            'parent': self.parent,
        }


class GpuInfo:
    """GPU física do host, com os dados de particionamento quando suportado."""

    def __init__(self, device_instance_id, name, manufacturer=None, driver_version=None,
                 supports_partitioning=False, partition_path=None, partition_count=0,
                 total_vram=0, available_vram=0, min_partition_vram=0, max_partition_vram=0,
                 optimal_partition_vram=0):
        self.device_instance_id = device_instance_id
        self.name = name
        self.manufacturer = manufacturer
        self.driver_version = driver_version
        self.supports_partitioning = supports_partitioning
        self.partition_path = partition_path
        self.partition_count = partition_count
        self.total_vram = total_vram
        self.available_vram = available_vram
        self.min_partition_vram = min_partition_vram
        self.max_partition_vram = max_partition_vram
        self.optimal_partition_vram = optimal_partition_vram

    def to_dict(self):
        data = {
            'device_instance_id': self.device_instance_id,
            'name': self.name,
            'manufacturer': self.manufacturer,
            'driver_version': self.driver_version,
            'supports_partitioning': self.supports_partitioning,
        }
        if self.supports_partitioning:
            data['partitioning'] = {
                'partition_count': self.partition_count,
                'total_vram': self.total_vram,
                'available_vram': self.available_vram,
                'min_partition_vram': self.min_partition_vram,
                'max_partition_vram': self.max_partition_vram,
                'optimal_partition_vram': self.optimal_partition_vram,
            }
        return data


class GpuPartition:
    def __init__(self, id, vm_name, host_resource=None, min_vram=0, max_vram=0, optimal_vram=0,
                 path=None):
        self.id = id
        self.vm_name = vm_name
        self.host_resource = host_resource
        self.min_vram = min_vram
        self.max_vram = max_vram
        self.optimal_vram = optimal_vram
        self.path = path

    @classmethod
    def from_wmi(cls, data, vm_name):
        host_resource = data.get('HostResource') or []
        return cls(
            id=data.get('InstanceID'),
            vm_name=vm_name,
            host_resource=host_resource[0] if host_resource else None,
            min_vram=int(data.get('MinPartitionVRAM') or 0),
            max_vram=int(data.get('MaxPartitionVRAM') or 0),
            optimal_vram=int(data.get('OptimalPartitionVRAM') or 0),
            path=data.get('__PATH'),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'vm': self.vm_name,
            'gpu': self.host_resource,
            'min_vram': self.min_vram,
            'max_vram': self.max_vram,
            'optimal_vram': self.optimal_vram,
        }


class AssignableDevice:
    MOUNTED = 'Mounted'
    DISMOUNTED = 'Dismounted'
    ASSIGNED = 'Assigned'

    def __init__(self, instance_path, name, status, location_path=None, vm_name=None, path=None):
        self.instance_path = instance_path
        self.name = name
        self.status = status
        self.location_path = location_path
        self.vm_name = vm_name
        self.path = path

    def to_dict(self):
        return {
            'instance_path': self.instance_path,
            'location_path': self.location_path,
            'name': self.name,
            'status': self.status,
            'vm': self.vm_name,
        }
