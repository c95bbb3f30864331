"""
guestusb USB Passthrough Manager

Keeps a running guest's USB devices in line with the user's passthrough
list:
- Tracks the devices connected to the host
- Names devices from usb.ids or their own string descriptors
- Persists the passthrough list
- Mirrors hotplug events into the guest
- Catches the guest up when it comes online
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Tuple, Union

from common.observable import Observable
from vm_manager.core.config_store import PassthroughConfigStore
from vm_manager.core.connection import LibvirtConnection
from vm_manager.core.guest_state import GuestStateMonitor
from vm_manager.core.vm_control import LibvirtUSBController, VMControlClient
from .devices import LiveDevice, PassthroughDevice
from .hotplug import HotplugDispatcher
from .lsusb import query_device_strings
from .passthrough import PassthroughStore, RecordList
from .reconciler import GuestOnlineReconciler
from .scanner import USBDeviceScanner, USBHotplugMonitor
from .strings import DeviceStringResolver, StringQuery
from .usb_ids import USBIdDatabase

logger = logging.getLogger(__name__)


class USBPassthroughManager:
    """
    Owns every piece of USB passthrough state for one guest.

    Build exactly one per process (``from_config`` for the real thing) and
    hand it to whatever needs it.

    Args:
        config_store: Durable passthrough list
        database: Static vendor/product names
        vm: Control channel to the guest
        guest: Provides ``is_online`` plus ``start()``/``stop()``
        scanner: Host device enumeration
        monitor: Host hotplug events
        query: Live string descriptor fallback
        connection: libvirt connection closed by ``stop()``
    """

    def __init__(
        self,
        config_store: PassthroughConfigStore,
        database: USBIdDatabase,
        vm: VMControlClient,
        guest: GuestStateMonitor,
        scanner: Optional[USBDeviceScanner] = None,
        monitor: Optional[USBHotplugMonitor] = None,
        query: StringQuery = query_device_strings,
        connection: Optional[LibvirtConnection] = None,
    ):
        self._guest = guest
        self._connection = connection
        self._scanner = scanner or USBDeviceScanner()
        self._monitor = monitor or USBHotplugMonitor(self._scanner.context)
        self._lock = threading.RLock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._started = False

        self.devices: Observable[Tuple[LiveDevice, ...]] = Observable(())
        self.resolver = DeviceStringResolver(database, query)
        self.store = PassthroughStore(
            config_store,
            self.resolver,
            vm,
            self.devices,
            lock=self._lock,
            guest_online=guest.is_online,
        )
        self._vm = vm
        self.dispatcher = HotplugDispatcher(
            self._scanner,
            self.resolver,
            self.store,
            vm,
            self.devices,
            guest.is_online,
            lock=self._lock,
        )
        self._monitor.subscribe(self.dispatcher.on_attach, self.dispatcher.on_detach)
        self.reconciler: Optional[GuestOnlineReconciler] = None

    @classmethod
    def from_config(
        cls,
        config_store: PassthroughConfigStore,
        domain: Optional[str] = None,
        uri: Optional[str] = None,
        usb_ids_path: Optional[Union[str, Path]] = None,
        strict_ids: bool = True,
    ) -> "USBPassthroughManager":
        """
        Wire the manager to libvirt, udev and usb.ids.

        Explicit arguments override the values saved in the config file.

        Raises:
            DeviceDatabaseError: If usb.ids is unreadable and strict_ids is set
        """
        config = config_store.config
        domain = domain or config.domain
        uri = uri or config.libvirt_uri

        database = USBIdDatabase.open(usb_ids_path or config.usb_ids_path, strict=strict_ids)
        connection = LibvirtConnection(uri)

        return cls(
            config_store=config_store,
            database=database,
            vm=LibvirtUSBController(connection, domain),
            guest=GuestStateMonitor(connection, domain),
            connection=connection,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Take the initial snapshot and begin following host and guest events."""
        if self._started:
            return

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="usb-passthrough")
        self.dispatcher.executor = self._executor
        self.reconciler = GuestOnlineReconciler(
            self.store,
            self._vm,
            self._guest.is_online,
            lock=self._lock,
            executor=self._executor,
        )

        try:
            # Name everything up front; on detach the device can no longer be
            # asked for its strings
            for device in self.refresh():
                self.resolver.resolve_device(device)

            self._monitor.start()
            self.reconciler.start()
            self._guest.start()
        except Exception:
            logger.error("USB passthrough manager failed to start", exc_info=True)
            self._shutdown()
            raise

        self._started = True
        logger.info(
            f"USB passthrough manager started "
            f"({len(self.devices.value)} devices, {len(self.store.current)} passthrough entries)"
        )

    def stop(self) -> None:
        """Stop following events and wait for queued handlers to finish."""
        if not self._started:
            return

        self._shutdown()
        self._started = False
        logger.info("USB passthrough manager stopped")

    def _shutdown(self) -> None:
        # udev thread first, so nothing is queued after the executor closes
        self._monitor.stop()
        self._guest.stop()
        if self.reconciler:
            self.reconciler.stop()
        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.dispatcher.executor = None
        if self._connection is not None:
            self._connection.disconnect()

    def __enter__(self) -> "USBPassthroughManager":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def passthrough_devices(self) -> Observable[RecordList]:
        return self.store.records

    @property
    def is_online(self) -> bool:
        return self._guest.is_online.value

    def refresh_guest(self) -> bool:
        """Poll the guest state once (for short-lived callers that never start())."""
        return self._guest.refresh()

    def refresh(self) -> Tuple[LiveDevice, ...]:
        """Re-read connected devices from the host."""
        return self.dispatcher.refresh()

    def stringify(self, vendor_id: Union[int, str], product_id: Union[int, str]) -> str:
        return self.resolver.resolve(vendor_id, product_id)

    def stringify_device(self, device: LiveDevice) -> str:
        return self.resolver.resolve_device(device)

    def stringify_record(self, record: PassthroughDevice) -> str:
        return self.resolver.stringify_record(record)

    def contains(self, device: LiveDevice) -> bool:
        return self.store.contains(device)

    def is_connected(self, record: PassthroughDevice) -> bool:
        return self.store.is_connected(record)

    def find_connected(self, vendor_id: int, product_id: int) -> Optional[LiveDevice]:
        for device in self.devices.value:
            if device.key == (vendor_id, product_id):
                return device
        return None

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def add(self, device: LiveDevice) -> PassthroughDevice:
        """
        Add a connected device to the passthrough list.

        Raises:
            DuplicateDeviceError: If it is already listed
            VMControlError: If the VM refused the device (the list is saved)
        """
        return self.store.add_device(device)

    def remove(self, record: PassthroughDevice) -> None:
        """
        Remove a device from the passthrough list.

        Raises:
            VMControlError: If the VM refused to release the device (the
                list is saved)
        """
        self.store.remove(record)
