"""guestusb USB device naming and enumeration.

The passthrough manager itself lives in ``vm_manager.usb.manager``.
"""
from .devices import (
    DeviceStrings,
    LiveDevice,
    PassthroughDevice,
    format_display_name,
    parse_usb_id,
    usb_id,
)
from .scanner import USBDeviceScanner, USBHotplugMonitor
from .strings import DeviceStringResolver
from .usb_ids import USBIdDatabase, load_usb_ids

__all__ = [
    "DeviceStrings",
    "LiveDevice",
    "PassthroughDevice",
    "format_display_name",
    "parse_usb_id",
    "usb_id",
    "USBDeviceScanner",
    "USBHotplugMonitor",
    "DeviceStringResolver",
    "USBIdDatabase",
    "load_usb_ids",
]
