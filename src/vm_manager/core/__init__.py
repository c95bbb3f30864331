"""
VM Manager Core - libvirt interaction and passthrough configuration.
"""

from .config_store import PassthroughConfig, PassthroughConfigStore
from .connection import LibvirtConnection
from .guest_state import GuestStateMonitor
from .vm_control import LibvirtUSBController, VMControlClient

__all__ = [
    "PassthroughConfig",
    "PassthroughConfigStore",
    "LibvirtConnection",
    "GuestStateMonitor",
    "LibvirtUSBController",
    "VMControlClient",
]
