"""
LibVirt Connection Manager

Handles connection lifecycle, domain lookup and lifecycle event delivery.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Optional, Callable, Dict

import libvirt

from common.decorators import retry
from common.exceptions import DomainNotFoundError, LibvirtConnectionError

logger = logging.getLogger(__name__)


class LibvirtConnection:
    """
    Thread-safe libvirt connection manager.

    Provides:
    - Lazy connection with retry
    - Domain lookup by name
    - A background event loop for domain lifecycle callbacks
    """

    SYSTEM_URI = "qemu:///system"
    SESSION_URI = "qemu:///session"

    def __init__(self, uri: str = SYSTEM_URI):
        self._uri = uri
        self._conn: Optional[libvirt.virConnect] = None
        self._lock = threading.RLock()
        self._event_loop_running = False
        self._event_thread: Optional[threading.Thread] = None
        self._callback_ids: Dict[int, Callable] = {}

    @property
    def uri(self) -> str:
        """Get the connection URI."""
        return self._uri

    @property
    def is_connected(self) -> bool:
        """Check if connected to libvirt."""
        with self._lock:
            if self._conn is None:
                return False
            try:
                return bool(self._conn.isAlive())
            except libvirt.libvirtError:
                return False

    @retry(max_attempts=3, delay=0.5, exceptions=(LibvirtConnectionError,))
    def connect(self) -> None:
        """
        Establish connection to libvirt.

        Raises:
            LibvirtConnectionError: If connection fails
        """
        with self._lock:
            if self.is_connected:
                return

            # The event implementation must exist before the connection is
            # opened or lifecycle callbacks are never dispatched
            self._start_event_loop()

            try:
                libvirt.registerErrorHandler(self._error_handler, None)
                self._conn = libvirt.open(self._uri)
            except libvirt.libvirtError as e:
                self._conn = None
                raise LibvirtConnectionError(self._uri, cause=e) from e

            if self._conn is None:
                raise LibvirtConnectionError(self._uri)

            logger.info(f"Connected to libvirt: {self._uri}")

    def disconnect(self) -> None:
        """Close connection to libvirt."""
        with self._lock:
            self._event_loop_running = False
            if self._conn is not None:
                for callback_id in list(self._callback_ids):
                    self.deregister_domain_event(callback_id)
                try:
                    self._conn.close()
                except libvirt.libvirtError as e:
                    logger.debug(f"Error closing libvirt connection: {e}")
                self._conn = None
                logger.info("Disconnected from libvirt")

    @contextmanager
    def get_connection(self):
        """
        Get a live connection, connecting first if necessary.

        Usage:
            with conn_manager.get_connection() as conn:
                domain = conn.lookupByName("windows")
        """
        self.connect()
        with self._lock:
            yield self._conn

    def lookup_domain(self, name: str) -> libvirt.virDomain:
        """
        Look up a domain by name.

        Raises:
            DomainNotFoundError: If no such domain is defined
        """
        with self.get_connection() as conn:
            try:
                return conn.lookupByName(name)
            except libvirt.libvirtError as e:
                if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                    raise DomainNotFoundError(name) from e
                raise

    def _error_handler(self, ctx, error):
        """Handle libvirt errors."""
        # Suppress common non-fatal errors
        if error[0] in (libvirt.VIR_ERR_WARNING, libvirt.VIR_ERR_NO_DOMAIN):
            return
        logger.debug(f"LibVirt: {error}")

    def _start_event_loop(self):
        """Start libvirt event loop for async events."""
        if self._event_loop_running:
            return

        def event_loop():
            while self._event_loop_running:
                try:
                    libvirt.virEventRunDefaultImpl()
                except libvirt.libvirtError as e:
                    logger.error(f"libvirt event loop stopped: {e}")
                    break

        libvirt.virEventRegisterDefaultImpl()
        self._event_loop_running = True

        self._event_thread = threading.Thread(
            target=event_loop, name="libvirt-events", daemon=True
        )
        self._event_thread.start()

    def register_domain_event(self, callback: Callable) -> int:
        """
        Register callback for domain lifecycle events on all domains.

        Args:
            callback: Function(conn, domain, event, detail, opaque)

        Returns:
            Callback ID for later removal
        """
        with self.get_connection() as conn:
            callback_id = conn.domainEventRegisterAny(
                None,
                libvirt.VIR_DOMAIN_EVENT_ID_LIFECYCLE,
                callback,
                None,
            )
            self._callback_ids[callback_id] = callback
            return callback_id

    def deregister_domain_event(self, callback_id: int) -> None:
        """Remove a callback registered with register_domain_event."""
        with self._lock:
            self._callback_ids.pop(callback_id, None)
            if self._conn is None:
                return
            try:
                self._conn.domainEventDeregisterAny(callback_id)
            except libvirt.libvirtError as e:
                logger.debug(f"Failed to deregister domain event {callback_id}: {e}")
