"""
Guest online state, tracked from libvirt domain lifecycle events.
"""

from __future__ import annotations

import logging
from typing import Optional

import libvirt

from common.exceptions import DomainNotFoundError, VMError
from common.observable import Observable
from .connection import LibvirtConnection

logger = logging.getLogger(__name__)

ONLINE_EVENTS = {
    libvirt.VIR_DOMAIN_EVENT_STARTED,
    libvirt.VIR_DOMAIN_EVENT_RESUMED,
}

OFFLINE_EVENTS = {
    libvirt.VIR_DOMAIN_EVENT_STOPPED,
    libvirt.VIR_DOMAIN_EVENT_SHUTDOWN,
    libvirt.VIR_DOMAIN_EVENT_SUSPENDED,
    libvirt.VIR_DOMAIN_EVENT_CRASHED,
    libvirt.VIR_DOMAIN_EVENT_PMSUSPENDED,
}


class GuestStateMonitor:
    """
    Publishes whether the guest is running as ``is_online``.

    The flag starts False; ``start()`` reads the current domain state, so a
    guest that is already running produces a False -> True transition.
    """

    def __init__(self, connection: LibvirtConnection, domain_name: str):
        self._connection = connection
        self.domain_name = domain_name
        self.is_online: Observable[bool] = Observable(False)
        self._callback_id: Optional[int] = None

    def start(self) -> None:
        """Subscribe to lifecycle events and publish the current state."""
        if self._callback_id is None:
            self._callback_id = self._connection.register_domain_event(self._on_lifecycle_event)
        self.refresh()

    def stop(self) -> None:
        if self._callback_id is not None:
            self._connection.deregister_domain_event(self._callback_id)
            self._callback_id = None

    def refresh(self) -> bool:
        """Poll the domain state and publish it."""
        try:
            domain = self._connection.lookup_domain(self.domain_name)
            state, _reason = domain.state()
            online = state == libvirt.VIR_DOMAIN_RUNNING
        except DomainNotFoundError:
            logger.warning(f"VM {self.domain_name} is not defined; treating it as offline")
            online = False
        except VMError as e:
            logger.error(f"Cannot reach libvirt for VM {self.domain_name}: {e}")
            online = False
        except libvirt.libvirtError as e:
            logger.error(f"Failed to read state of VM {self.domain_name}: {e}")
            online = False

        self.is_online.set(online)
        return online

    def _on_lifecycle_event(self, conn, domain, event, detail, opaque) -> None:
        if domain.name() != self.domain_name:
            return

        if event in ONLINE_EVENTS:
            logger.info(f"VM {self.domain_name} is online")
            self.is_online.set(True)
        elif event in OFFLINE_EVENTS:
            logger.info(f"VM {self.domain_name} is offline")
            self.is_online.set(False)
