"""
USB device model.

LiveDevice is a snapshot of something plugged into the host right now.
PassthroughDevice is the durable record of the user's wish to hand a
VID:PID to the guest whenever it is connected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union, Dict, Any

UNKNOWN_VENDOR = "Unknown Vendor"
UNKNOWN_PRODUCT = "Unknown Product"

DeviceKey = Tuple[int, int]


def to_hex_id(value: Union[int, str]) -> str:
    """Normalize a 16-bit USB identifier to 4 lowercase hex digits."""
    if isinstance(value, str):
        value = int(value, 16)
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"USB identifier out of range: {value}")
    return f"{value:04x}"


def usb_id(vendor_id: Union[int, str], product_id: Union[int, str]) -> str:
    """Get USB ID in vendor:product format (e.g. "046d:c52b")."""
    return f"{to_hex_id(vendor_id)}:{to_hex_id(product_id)}"


def parse_usb_id(text: str) -> DeviceKey:
    """
    Parse a "VID:PID" string into integer identifiers.

    Raises:
        ValueError: If the string is not two hex identifiers separated by ':'
    """
    parts = text.strip().split(":")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Expected VID:PID, got '{text}'")
    vendor_id, product_id = (int(p, 16) for p in parts)
    # Range check
    to_hex_id(vendor_id)
    to_hex_id(product_id)
    return vendor_id, product_id


def format_display_name(
    vendor_id: Union[int, str],
    product_id: Union[int, str],
    manufacturer: Optional[str],
    product: Optional[str],
) -> str:
    """Format: [VID:PID] Vendor Name | Product Name"""
    return (
        f"[{usb_id(vendor_id, product_id)}] "
        f"{manufacturer or UNKNOWN_VENDOR} | {product or UNKNOWN_PRODUCT}"
    )


@dataclass(frozen=True)
class DeviceStrings:
    """Human-readable names for one VID:PID pair."""
    manufacturer: Optional[str] = None
    product: Optional[str] = None


@dataclass(frozen=True)
class LiveDevice:
    """A USB device currently connected to the host."""
    vendor_id: int
    product_id: int
    bus: int = 0
    address: int = 0
    sys_path: Optional[str] = None

    @property
    def key(self) -> DeviceKey:
        return (self.vendor_id, self.product_id)

    @property
    def usb_id(self) -> str:
        return usb_id(self.vendor_id, self.product_id)


@dataclass(frozen=True)
class PassthroughDevice:
    """A device the user wants attached to the guest whenever it is connected."""
    vendor_id: int
    product_id: int
    manufacturer: Optional[str] = None
    product: Optional[str] = None

    @property
    def key(self) -> DeviceKey:
        return (self.vendor_id, self.product_id)

    @property
    def usb_id(self) -> str:
        return usb_id(self.vendor_id, self.product_id)

    @property
    def display_name(self) -> str:
        return format_display_name(
            self.vendor_id, self.product_id, self.manufacturer, self.product
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "vendor_id": self.vendor_id,
            "product_id": self.product_id,
            "manufacturer": self.manufacturer,
            "product": self.product,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PassthroughDevice":
        """Create PassthroughDevice from dictionary."""
        return cls(
            vendor_id=int(data["vendor_id"]),
            product_id=int(data["product_id"]),
            manufacturer=data.get("manufacturer"),
            product=data.get("product"),
        )
