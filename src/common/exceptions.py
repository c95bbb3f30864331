"""
guestusb Exception Hierarchy

Provides clear, actionable error messages with structured information
for logging, user feedback, and programmatic error handling.
"""

from typing import Optional, Dict, Any


class GuestUSBError(Exception):
    """
    Base exception for all guestusb errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context as key-value pairs
        cause: Original exception that caused this error
        recoverable: Whether the error is recoverable
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable

    def __str__(self):
        s = f"[{self.code}] {self.message}"
        if self.details:
            s += f" (details: {self.details})"
        if self.cause:
            s += f" caused by: {self.cause}"
        return s

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Passthrough list errors
# =============================================================================

class PassthroughError(GuestUSBError):
    """Base for passthrough list errors."""
    pass


class DeviceStringsNotResolvedError(PassthroughError):
    """A device was converted to a record before its names were resolved."""
    def __init__(self, usb_id: str):
        super().__init__(
            f"Device strings for {usb_id} not found in cache. "
            "Resolve the device name at least once before converting it.",
            code="STRINGS_NOT_RESOLVED",
            details={"usb_id": usb_id},
            recoverable=False,
        )


class DuplicateDeviceError(PassthroughError):
    """Device is already in the passthrough list."""
    def __init__(self, usb_id: str, display_name: str):
        super().__init__(
            f"Device \"{display_name}\" is already in the passthrough list",
            code="DUPLICATE_DEVICE",
            details={"usb_id": usb_id},
        )


# =============================================================================
# Device naming errors
# =============================================================================

class DeviceDatabaseError(GuestUSBError):
    """The usb.ids vendor/product database could not be read."""
    def __init__(self, path: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot read USB ID database at {path}",
            code="USB_IDS_UNREADABLE",
            details={
                "path": path,
                "hint": "Install hwdata or usbutils, or pass --allow-missing-ids",
            },
            cause=cause,
            recoverable=False,
        )


class DeviceQueryError(GuestUSBError):
    """Reading string descriptors from the device itself failed."""
    def __init__(self, usb_id: str, reason: str):
        super().__init__(
            f"Failed to query string descriptors for {usb_id}: {reason}",
            code="DEVICE_QUERY_FAILED",
            details={"usb_id": usb_id, "reason": reason},
        )


# =============================================================================
# VM-related errors
# =============================================================================

class VMError(GuestUSBError):
    """Base for VM-related errors."""
    pass


class DomainNotFoundError(VMError):
    """libvirt domain does not exist."""
    def __init__(self, vm_name: str):
        super().__init__(
            f"Virtual machine '{vm_name}' not found",
            code="VM_NOT_FOUND",
            details={"vm_name": vm_name},
            recoverable=False,
        )


class VMControlError(VMError):
    """Attaching, detaching or querying a USB device on the VM failed."""
    def __init__(
        self,
        operation: str,
        usb_id: str,
        reason: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            f"Failed to {operation} USB device {usb_id}: {reason}",
            code="VM_CONTROL_FAILED",
            details={"operation": operation, "usb_id": usb_id, "reason": reason},
            cause=cause,
        )


class LibvirtConnectionError(VMError):
    """Failed to connect to libvirt."""
    def __init__(self, uri: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot connect to libvirt at {uri}",
            code="LIBVIRT_CONNECTION_FAILED",
            details={"uri": uri},
            cause=cause,
        )


# =============================================================================
# Configuration errors
# =============================================================================

class ConfigError(GuestUSBError):
    """Base for configuration errors."""
    pass


class InvalidConfigError(ConfigError):
    """Invalid configuration."""
    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            f"Invalid configuration: {field}={value}: {reason}",
            code="INVALID_CONFIG",
            details={"field": field, "value": str(value), "reason": reason},
        )
