"""
Device String Resolver

Turns a VID:PID pair into "[vvvv:pppp] Vendor | Product", using usb.ids
first and the device's own string descriptors as a fallback. Every pair is
resolved at most once per process; the result is cached even when nothing
could be found, so the slow fallback never runs twice for the same device.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Union

from common.exceptions import DeviceQueryError
from .devices import (
    DeviceStrings,
    LiveDevice,
    PassthroughDevice,
    format_display_name,
    to_hex_id,
)
from .lsusb import query_device_strings
from .usb_ids import USBIdDatabase

logger = logging.getLogger(__name__)

StringQuery = Callable[[str, str], DeviceStrings]


class DeviceStringResolver:
    """
    Resolves and caches human-readable device names.

    Args:
        database: Static vendor/product names
        query: Live fallback, called as ``query(vendor_hex, product_hex)``
    """

    def __init__(
        self,
        database: USBIdDatabase,
        query: StringQuery = query_device_strings,
    ):
        self._database = database
        self._query = query
        self._cache: Dict[str, DeviceStrings] = {}
        self._lock = threading.Lock()

    def resolve(self, vendor_id: Union[int, str], product_id: Union[int, str]) -> str:
        """
        Get the display name for a VID:PID pair.

        Never raises for lookup failures; unknown parts are shown as
        "Unknown Vendor" / "Unknown Product".
        """
        vendor_hex = to_hex_id(vendor_id)
        product_hex = to_hex_id(product_id)
        strings = self._resolve_strings(vendor_hex, product_hex)
        return format_display_name(
            vendor_hex, product_hex, strings.manufacturer, strings.product
        )

    def resolve_device(self, device: LiveDevice) -> str:
        """Get the display name for a connected device."""
        return self.resolve(device.vendor_id, device.product_id)

    def stringify_record(self, record: PassthroughDevice) -> str:
        """Format a passthrough record from the names stored with it."""
        return record.display_name

    def strings_for(
        self,
        vendor_id: Union[int, str],
        product_id: Union[int, str],
    ) -> Optional[DeviceStrings]:
        """Cached strings for a pair, or None if it was never resolved."""
        key = f"{to_hex_id(vendor_id)}:{to_hex_id(product_id)}"
        with self._lock:
            return self._cache.get(key)

    def _resolve_strings(self, vendor_hex: str, product_hex: str) -> DeviceStrings:
        key = f"{vendor_hex}:{product_hex}"
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        vendor = self._database.vendor_name(vendor_hex)
        product = self._database.product_name(vendor_hex, product_hex)

        if not vendor or not product:
            try:
                live = self._query(vendor_hex, product_hex)
            except (DeviceQueryError, OSError) as e:
                logger.error(f"Error fetching string descriptors for USB device {key}: {e}")
            except Exception as e:
                logger.error(
                    f"Unexpected error fetching string descriptors for USB device {key}: {e}",
                    exc_info=True,
                )
            else:
                vendor = vendor or live.manufacturer
                product = product or live.product

        strings = DeviceStrings(manufacturer=vendor or None, product=product or None)

        with self._lock:
            # A concurrent resolution may have won the race; keep the first
            # entry so names never change once published.
            strings = self._cache.setdefault(key, strings)
        return strings

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
