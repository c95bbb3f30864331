"""
Host USB enumeration and hotplug notifications via udev.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Tuple

import pyudev

from .devices import LiveDevice

logger = logging.getLogger(__name__)

DeviceCallback = Callable[[LiveDevice], None]

STOP_TIMEOUT = 5.0


def device_from_udev(device) -> Optional[LiveDevice]:
    """
    Build a LiveDevice from a pyudev device.

    Remove events may arrive without the udev database properties, so the
    kernel's PRODUCT=vid/pid/bcd variable is used as a fallback.
    """
    props = device.properties
    vendor_id = props.get('ID_VENDOR_ID')
    product_id = props.get('ID_MODEL_ID')

    try:
        if vendor_id and product_id:
            vid, pid = int(vendor_id, 16), int(product_id, 16)
        else:
            product = props.get('PRODUCT', '')
            parts = product.split('/')
            if len(parts) < 2:
                return None
            vid, pid = int(parts[0], 16), int(parts[1], 16)

        return LiveDevice(
            vendor_id=vid,
            product_id=pid,
            bus=int(props.get('BUSNUM', '0')),
            address=int(props.get('DEVNUM', '0')),
            sys_path=device.sys_path,
        )
    except ValueError as e:
        logger.debug(f"Failed to parse USB device {device.sys_path}: {e}")
        return None


class USBDeviceScanner:
    """Lists USB devices currently connected to the host."""

    def __init__(self, context: Optional[pyudev.Context] = None):
        self._context = context or pyudev.Context()

    @property
    def context(self) -> pyudev.Context:
        return self._context

    def scan_all(self) -> Tuple[LiveDevice, ...]:
        """Scan all connected USB devices (hubs included)."""
        devices: List[LiveDevice] = []
        for device in self._context.list_devices(subsystem='usb', DEVTYPE='usb_device'):
            live = device_from_udev(device)
            if live is not None:
                devices.append(live)
        return tuple(devices)


class USBHotplugMonitor:
    """
    Delivers USB attach/detach events from a udev netlink monitor.

    Callbacks run on the monitor's background thread.
    """

    def __init__(self, context: Optional[pyudev.Context] = None):
        self._context = context or pyudev.Context()
        self._observer: Optional[pyudev.MonitorObserver] = None
        self._on_attach: List[DeviceCallback] = []
        self._on_detach: List[DeviceCallback] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def subscribe(self, on_attach: DeviceCallback, on_detach: DeviceCallback) -> None:
        """Register attach and detach handlers."""
        with self._lock:
            self._on_attach.append(on_attach)
            self._on_detach.append(on_detach)

    def start(self) -> None:
        """Start listening for udev events."""
        if self._observer is not None:
            return

        monitor = pyudev.Monitor.from_netlink(self._context)
        monitor.filter_by(subsystem='usb', device_type='usb_device')

        self._observer = pyudev.MonitorObserver(
            monitor, callback=self._handle_event, name='usb-hotplug'
        )
        self._observer.daemon = True
        self._observer.start()
        logger.info("Listening for USB hotplug events")

    def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """Stop the monitor thread and wait for the event in flight to finish."""
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.send_stop()
        # A handler may stop the monitor from its own thread
        if observer is not threading.current_thread():
            observer.join(timeout)
        logger.info("Stopped USB hotplug monitor")

    def _handle_event(self, device) -> None:
        action = device.action
        if action == 'add':
            handlers = self._on_attach
        elif action == 'remove':
            handlers = self._on_detach
        else:
            return

        live = device_from_udev(device)
        if live is None:
            logger.debug(f"Ignoring {action} event without USB IDs: {device.sys_path}")
            return

        with self._lock:
            handlers = list(handlers)

        for handler in handlers:
            try:
                handler(live)
            except Exception as e:
                logger.error(f"USB {action} handler failed for {live.usb_id}: {e}", exc_info=True)
