"""
VM USB Control

Attach, detach and look up USB host devices on a running libvirt guest.
Devices are addressed by VID:PID, the same way the passthrough list
identifies them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional
from xml.etree import ElementTree as ET

import libvirt

from common.exceptions import DomainNotFoundError, VMControlError
from vm_manager.templates.loader import TemplateLoader
from vm_manager.usb.devices import to_hex_id, usb_id
from .connection import LibvirtConnection

logger = logging.getLogger(__name__)


class VMControlClient(ABC):
    """
    Control channel to the guest.

    All calls block until the hypervisor has answered.
    """

    @abstractmethod
    def exists(self, vendor_id: int, product_id: int) -> bool:
        """Whether a VID:PID is currently attached to the guest."""

    @abstractmethod
    def add(self, vendor_id: int, product_id: int) -> None:
        """Attach a host device to the guest."""

    @abstractmethod
    def remove(self, vendor_id: int, product_id: int) -> None:
        """Detach a host device from the guest."""


class LibvirtUSBController(VMControlClient):
    """
    USB hotplug through libvirt <hostdev type='usb'> devices.

    Only the live domain is changed; the persistent domain definition is
    left alone so the passthrough list stays the single source of truth.
    """

    def __init__(
        self,
        connection: LibvirtConnection,
        domain_name: str,
        templates: Optional[TemplateLoader] = None,
    ):
        self._connection = connection
        self.domain_name = domain_name
        self._templates = templates or TemplateLoader()

    def _domain(self, operation: str, vendor_id: int, product_id: int) -> libvirt.virDomain:
        try:
            return self._connection.lookup_domain(self.domain_name)
        except DomainNotFoundError as e:
            raise VMControlError(operation, usb_id(vendor_id, product_id), str(e), cause=e) from e
        except libvirt.libvirtError as e:
            raise VMControlError(operation, usb_id(vendor_id, product_id), str(e), cause=e) from e

    def exists(self, vendor_id: int, product_id: int) -> bool:
        domain = self._domain("query", vendor_id, product_id)
        try:
            if not domain.isActive():
                return False
            xml = domain.XMLDesc(0)
        except libvirt.libvirtError as e:
            raise VMControlError("query", usb_id(vendor_id, product_id), str(e), cause=e) from e

        return hostdev_attached(xml, vendor_id, product_id)

    def add(self, vendor_id: int, product_id: int) -> None:
        self._update("attach", vendor_id, product_id)

    def remove(self, vendor_id: int, product_id: int) -> None:
        self._update("detach", vendor_id, product_id)

    def _update(self, operation: str, vendor_id: int, product_id: int) -> None:
        device_id = usb_id(vendor_id, product_id)
        xml = self._templates.render_usb_hostdev(to_hex_id(vendor_id), to_hex_id(product_id))
        if xml is None:
            raise VMControlError(operation, device_id, "USB hostdev template missing")

        domain = self._domain(operation, vendor_id, product_id)
        try:
            if operation == "attach":
                domain.attachDeviceFlags(xml, libvirt.VIR_DOMAIN_AFFECT_LIVE)
            else:
                domain.detachDeviceFlags(xml, libvirt.VIR_DOMAIN_AFFECT_LIVE)
        except libvirt.libvirtError as e:
            raise VMControlError(operation, device_id, str(e), cause=e) from e

        logger.info(
            f"{operation.capitalize()}ed USB device {device_id} on VM {self.domain_name}",
            extra={"usb_id": device_id, "domain": self.domain_name},
        )


def hostdev_attached(domain_xml: str, vendor_id: int, product_id: int) -> bool:
    """Check a domain XML for a USB hostdev with the given VID:PID."""
    try:
        root = ET.fromstring(domain_xml)
    except ET.ParseError as e:
        logger.warning(f"Error parsing domain XML: {e}")
        return False

    for hostdev in root.findall(".//devices/hostdev[@type='usb']"):
        vendor = hostdev.find("source/vendor")
        product = hostdev.find("source/product")
        if vendor is None or product is None:
            continue
        try:
            if int(vendor.get("id", ""), 16) == vendor_id and int(product.get("id", ""), 16) == product_id:
                return True
        except ValueError:
            continue

    return False
