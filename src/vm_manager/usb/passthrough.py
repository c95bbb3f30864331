"""
Passthrough Record Store

In-memory working copy of the persisted passthrough list. Every change
publishes a brand new tuple and writes the complete list back to the
config store, then brings the VM in line.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple

from common.exceptions import DeviceStringsNotResolvedError, DuplicateDeviceError
from common.observable import Observable
from vm_manager.core.config_store import PassthroughConfigStore
from vm_manager.core.vm_control import VMControlClient
from .devices import LiveDevice, PassthroughDevice
from .strings import DeviceStringResolver

logger = logging.getLogger(__name__)

RecordList = Tuple[PassthroughDevice, ...]


class PassthroughStore:
    """
    The user's passthrough list.

    Args:
        config_store: Durable storage for the list
        resolver: Source of cached device names for new records
        vm: Control channel to the guest
        devices: Current connected-device snapshot
        lock: Lock shared with the event handlers
        guest_online: When given, VM calls are skipped while it is False
            and left to the next online reconciliation
    """

    def __init__(
        self,
        config_store: PassthroughConfigStore,
        resolver: DeviceStringResolver,
        vm: VMControlClient,
        devices: Observable[Tuple[LiveDevice, ...]],
        lock: Optional[threading.RLock] = None,
        guest_online: Optional[Observable[bool]] = None,
    ):
        self._config_store = config_store
        self._resolver = resolver
        self._vm = vm
        self._devices = devices
        self._lock = lock or threading.RLock()
        self._guest_online = guest_online
        self.records: Observable[RecordList] = Observable(config_store.get_passthrough_devices())

    @property
    def current(self) -> RecordList:
        return self.records.value

    def to_record(self, device: LiveDevice) -> PassthroughDevice:
        """
        Convert a connected device into a passthrough record.

        Raises:
            DeviceStringsNotResolvedError: If the device's names were never
                resolved
        """
        strings = self._resolver.strings_for(device.vendor_id, device.product_id)
        if strings is None:
            raise DeviceStringsNotResolvedError(device.usb_id)

        return PassthroughDevice(
            vendor_id=device.vendor_id,
            product_id=device.product_id,
            manufacturer=strings.manufacturer,
            product=strings.product,
        )

    def add_device(self, device: LiveDevice) -> PassthroughDevice:
        """Resolve, convert and add a connected device."""
        self._resolver.resolve_device(device)
        record = self.to_record(device)
        self.add(record)
        return record

    def add(self, record: PassthroughDevice) -> None:
        """
        Append a record, persist the list and attach the device.

        Raises:
            DuplicateDeviceError: If the VID:PID is already in the list
            VMControlError: If attaching fails; the list stays saved
        """
        with self._lock:
            current = self.records.value
            if any(r.key == record.key for r in current):
                raise DuplicateDeviceError(record.usb_id, record.display_name)

            self._publish(current + (record,))
            logger.info(f"Added device \"{record.display_name}\" to passthrough list")

            if self._vm_reachable() and not self._vm.exists(record.vendor_id, record.product_id):
                self._vm.add(record.vendor_id, record.product_id)

    def remove(self, record: PassthroughDevice) -> None:
        """
        Drop a record, persist the list and detach the device.

        Raises:
            VMControlError: If detaching fails; the list stays saved
        """
        with self._lock:
            remaining = tuple(r for r in self.records.value if r.key != record.key)
            self._publish(remaining)
            logger.info(f"Removed device \"{record.display_name}\" from passthrough list")

            if self._vm_reachable() and self._vm.exists(record.vendor_id, record.product_id):
                self._vm.remove(record.vendor_id, record.product_id)

    def contains(self, device: LiveDevice) -> bool:
        """Whether a connected device is in the list (needs resolved names)."""
        key = self.to_record(device).key
        return any(r.key == key for r in self.records.value)

    def is_connected(self, record: PassthroughDevice) -> bool:
        """Whether the record's device is in the current host snapshot."""
        return any(d.key == record.key for d in self._devices.value)

    def find(self, vendor_id: int, product_id: int) -> Optional[PassthroughDevice]:
        for record in self.records.value:
            if record.key == (vendor_id, product_id):
                return record
        return None

    def _publish(self, records: RecordList) -> None:
        self._config_store.set_passthrough_devices(records)
        self.records.set(records)

    def _vm_reachable(self) -> bool:
        if self._guest_online is not None and not self._guest_online.value:
            logger.info("Guest is offline; passthrough changes apply when it comes online")
            return False
        return True
