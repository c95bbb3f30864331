"""
guestusb Common Utilities

Shared exceptions, logging setup and helpers.
"""

from .exceptions import (
    GuestUSBError, PassthroughError, DeviceStringsNotResolvedError,
    DuplicateDeviceError, DeviceDatabaseError, DeviceQueryError, VMError,
    DomainNotFoundError, VMControlError, LibvirtConnectionError, ConfigError,
    InvalidConfigError,
)
from .decorators import handle_errors, retry, timed
from .logging_config import setup_logging
from .observable import Observable

__all__ = [
    # Exceptions
    "GuestUSBError", "PassthroughError", "DeviceStringsNotResolvedError",
    "DuplicateDeviceError", "DeviceDatabaseError", "DeviceQueryError", "VMError",
    "DomainNotFoundError", "VMControlError", "LibvirtConnectionError", "ConfigError",
    "InvalidConfigError",
    # Decorators
    "handle_errors", "retry", "timed",
    # Logging
    "setup_logging",
    # Observables
    "Observable",
]
