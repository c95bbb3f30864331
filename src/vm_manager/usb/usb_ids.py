"""
USB vendor/product name database.

Parses the usb.ids file shipped by hwdata/usbutils into a lookup table:
vendor ID -> vendor name and vendor ID -> product ID -> product name.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

from common.exceptions import DeviceDatabaseError

logger = logging.getLogger(__name__)

# Common locations for usb.ids
USB_IDS_PATHS = [
    Path("/usr/share/hwdata/usb.ids"),
    Path("/usr/share/misc/usb.ids"),
    Path("/usr/share/usb.ids"),
    Path("/var/lib/usbutils/usb.ids"),
]

_VENDOR_RE = re.compile(r'^([0-9a-f]{4})\s+(.+)$', re.IGNORECASE)
_PRODUCT_RE = re.compile(r'^\t([0-9a-f]{4})\s+(.+)$', re.IGNORECASE)


@dataclass
class VendorEntry:
    """A vendor section of usb.ids."""
    name: str
    devices: Dict[str, str] = field(default_factory=dict)


def parse_usb_ids(text: str) -> Dict[str, VendorEntry]:
    """
    Parse usb.ids content.

    Vendor lines start at column 0, product lines are indented by exactly
    one tab. Interface lines (two tabs), comments and the trailing
    class/language sections are skipped.
    """
    vendors: Dict[str, VendorEntry] = {}
    current_vendor: Optional[str] = None

    for line in text.splitlines():
        if line.startswith('#') or not line.strip():
            continue

        if not line.startswith('\t'):
            match = _VENDOR_RE.match(line)
            if match:
                current_vendor = match.group(1).lower()
                vendors[current_vendor] = VendorEntry(name=match.group(2).strip())
            else:
                # "C 00  (Defined at Interface level)" and friends
                current_vendor = None
        elif not line.startswith('\t\t'):
            match = _PRODUCT_RE.match(line)
            if match and current_vendor:
                vendors[current_vendor].devices[match.group(1).lower()] = match.group(2).strip()

    return vendors


def load_usb_ids(path: Union[str, Path]) -> Dict[str, VendorEntry]:
    """
    Read and parse a usb.ids file.

    Raises:
        DeviceDatabaseError: If the file cannot be read
    """
    path = Path(path)
    try:
        text = path.read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        raise DeviceDatabaseError(str(path), cause=e) from e

    vendors = parse_usb_ids(text)
    logger.debug(f"Loaded {len(vendors)} USB vendors from {path}")
    return vendors


def find_usb_ids() -> Optional[Path]:
    """Return the first usb.ids found in the standard locations."""
    for candidate in USB_IDS_PATHS:
        if candidate.exists():
            return candidate
    return None


class USBIdDatabase:
    """Read-only vendor/product name lookup."""

    def __init__(self, vendors: Optional[Dict[str, VendorEntry]] = None):
        self._vendors = vendors or {}

    @classmethod
    def open(
        cls,
        path: Optional[Union[str, Path]] = None,
        strict: bool = True,
    ) -> "USBIdDatabase":
        """
        Load the database from ``path`` or the first standard location.

        Args:
            path: Explicit usb.ids path
            strict: Raise if the database is unreadable. When False, an
                empty database is returned and every device shows up as
                unknown unless the live query can name it.

        Raises:
            DeviceDatabaseError: If strict and the database cannot be read
        """
        resolved = Path(path) if path else find_usb_ids()
        if resolved is None:
            resolved = USB_IDS_PATHS[0]

        try:
            return cls(load_usb_ids(resolved))
        except DeviceDatabaseError as e:
            if strict:
                raise
            logger.warning(f"{e}; continuing without vendor/product names")
            return cls()

    def __len__(self) -> int:
        return len(self._vendors)

    def vendor_name(self, vendor_hex: str) -> Optional[str]:
        entry = self._vendors.get(vendor_hex.lower())
        return entry.name if entry else None

    def product_name(self, vendor_hex: str, product_hex: str) -> Optional[str]:
        entry = self._vendors.get(vendor_hex.lower())
        if entry is None:
            return None
        return entry.devices.get(product_hex.lower())
