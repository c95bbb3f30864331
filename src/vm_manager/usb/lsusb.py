"""
Live string descriptor lookup through lsusb.

Many devices are missing from usb.ids but carry their own manufacturer and
product strings. Opening the device directly usually needs privileges we
don't have, while ``lsusb -v`` goes through the cached sysfs descriptors.
"""

from __future__ import annotations

import logging
import re
import subprocess
from typing import Optional

from common.exceptions import DeviceQueryError
from .devices import DeviceStrings

logger = logging.getLogger(__name__)

LSUSB_TIMEOUT = 10

_MANUFACTURER_RE = re.compile(r'^[ \t]*iManufacturer[ \t]+\d+[ \t]+(\S.*)$', re.MULTILINE)
_PRODUCT_RE = re.compile(r'^[ \t]*iProduct[ \t]+\d+[ \t]+(\S.*)$', re.MULTILINE)


def _match(pattern: re.Pattern, output: str) -> Optional[str]:
    match = pattern.search(output)
    if not match:
        return None
    return match.group(1).strip() or None


def parse_lsusb_verbose(output: str) -> DeviceStrings:
    """Extract iManufacturer/iProduct strings from ``lsusb -v`` output."""
    return DeviceStrings(
        manufacturer=_match(_MANUFACTURER_RE, output),
        product=_match(_PRODUCT_RE, output),
    )


def query_device_strings(vendor_hex: str, product_hex: str) -> DeviceStrings:
    """
    Read the string descriptors of a connected device with lsusb.

    Args:
        vendor_hex: Vendor ID, 4 hex digits
        product_hex: Product ID, 4 hex digits

    Raises:
        DeviceQueryError: lsusb is missing, timed out, or could not find
            the device
    """
    usb_id = f"{vendor_hex}:{product_hex}"
    try:
        result = subprocess.run(
            ['lsusb', '-d', usb_id, '-v'],
            capture_output=True,
            text=True,
            # String descriptors are device-supplied bytes
            encoding="utf-8",
            errors="replace",
            timeout=LSUSB_TIMEOUT,
        )
    except FileNotFoundError as e:
        raise DeviceQueryError(usb_id, "lsusb not installed") from e
    except subprocess.TimeoutExpired as e:
        raise DeviceQueryError(usb_id, f"lsusb timed out after {LSUSB_TIMEOUT}s") from e

    # lsusb -v exits non-zero when some descriptors are unreadable but
    # still prints what it could get
    if result.returncode != 0 and not result.stdout.strip():
        reason = result.stderr.strip() or f"exit status {result.returncode}"
        raise DeviceQueryError(usb_id, reason)

    strings = parse_lsusb_verbose(result.stdout)
    logger.debug(f"lsusb strings for {usb_id}: {strings}")
    return strings
