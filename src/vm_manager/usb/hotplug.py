"""
Hotplug Event Dispatcher

Reacts to USB attach/detach on the host: refreshes the device snapshot,
names the device, and mirrors the change into the guest when the device
is on the passthrough list.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from typing import Callable, Optional, Tuple

from common.decorators import handle_errors
from common.exceptions import VMError
from common.observable import Observable
from vm_manager.core.vm_control import VMControlClient
from .devices import LiveDevice
from .passthrough import PassthroughStore
from .scanner import USBDeviceScanner
from .strings import DeviceStringResolver

logger = logging.getLogger(__name__)


class HotplugDispatcher:
    """
    Handles host USB events one at a time.

    ``on_attach``/``on_detach`` are safe to call from the udev monitor
    thread: with an executor they only queue the work and return.
    """

    def __init__(
        self,
        scanner: USBDeviceScanner,
        resolver: DeviceStringResolver,
        store: PassthroughStore,
        vm: VMControlClient,
        devices: Observable[Tuple[LiveDevice, ...]],
        guest_online: Observable[bool],
        lock: Optional[threading.RLock] = None,
        executor: Optional[Executor] = None,
    ):
        self._scanner = scanner
        self._resolver = resolver
        self._store = store
        self._vm = vm
        self._devices = devices
        self._guest_online = guest_online
        self._lock = lock or threading.RLock()
        self.executor = executor

    def refresh(self) -> Tuple[LiveDevice, ...]:
        """Re-read the full device list from the host and publish it."""
        with self._lock:
            snapshot = self._scanner.scan_all()
            self._devices.set(snapshot)
            return snapshot

    def on_attach(self, device: LiveDevice) -> None:
        self._dispatch(self.handle_attach, device)

    def on_detach(self, device: LiveDevice) -> None:
        self._dispatch(self.handle_detach, device)

    @handle_errors(VMError, message="Passing through attached USB device failed")
    def handle_attach(self, device: LiveDevice) -> None:
        with self._lock:
            self.refresh()
            name = self._resolver.resolve_device(device)
            logger.info(f"USB device attached: {name}")

            if (
                self._guest_online.value
                and self._store.contains(device)
                and not self._vm.exists(device.vendor_id, device.product_id)
            ):
                logger.info(f"Device is in passthrough list, adding to VM: {name}")
                self._vm.add(device.vendor_id, device.product_id)

    @handle_errors(VMError, message="Removing detached USB device from VM failed")
    def handle_detach(self, device: LiveDevice) -> None:
        with self._lock:
            self.refresh()
            name = self._resolver.resolve_device(device)
            logger.info(f"USB device detached: {name}")

            if (
                self._guest_online.value
                and self._store.contains(device)
                and self._vm.exists(device.vendor_id, device.product_id)
            ):
                logger.info(f"Device is in passthrough list, removing from VM: {name}")
                self._vm.remove(device.vendor_id, device.product_id)

    def _dispatch(self, handler: Callable[[LiveDevice], None], device: LiveDevice) -> None:
        executor = self.executor
        if executor is None:
            handler(device)
            return

        try:
            future = executor.submit(handler, device)
        except RuntimeError:
            logger.warning(f"Dropping USB event for {device.usb_id}: dispatcher is shut down")
            return
        future.add_done_callback(log_task_failure)


def log_task_failure(future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"USB event handler crashed: {error}", exc_info=error)
