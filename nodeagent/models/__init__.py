from .state import State, VmState, GroupState, ResourceState, NodeState
from .hyperv import (
    VirtualMachine, Snapshot, VirtualSwitch, VhdInfo,
    GpuInfo, GpuPartition, AssignableDevice,
)
from .cluster import ClusterInfo, NodeInfo, GroupInfo, ResourceInfo
