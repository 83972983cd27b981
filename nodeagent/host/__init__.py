from .base import HostControlInterface

__all__ = ['HostControlInterface']
