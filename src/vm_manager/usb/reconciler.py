"""
Guest-Online Reconciler

When the guest comes online, attach every connected passthrough device
that the VM doesn't already have.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from typing import Optional

from common.decorators import timed
from common.exceptions import VMError
from common.observable import Observable
from vm_manager.core.vm_control import VMControlClient
from .hotplug import log_task_failure
from .passthrough import PassthroughStore

logger = logging.getLogger(__name__)


class GuestOnlineReconciler:
    """Runs a reconciliation sweep on every offline -> online transition."""

    def __init__(
        self,
        store: PassthroughStore,
        vm: VMControlClient,
        guest_online: Observable[bool],
        lock: Optional[threading.RLock] = None,
        executor: Optional[Executor] = None,
    ):
        self._store = store
        self._vm = vm
        self._guest_online = guest_online
        self._lock = lock or threading.RLock()
        self._executor = executor
        self._unsubscribe = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._guest_online.subscribe(self._on_online_changed)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_online_changed(self, was_online: bool, is_online: bool) -> None:
        if was_online or not is_online:
            return
        if self._executor is None:
            self.sweep()
        else:
            self._executor.submit(self.sweep).add_done_callback(log_task_failure)

    @timed
    def sweep(self) -> int:
        """
        Attach connected passthrough devices missing from the VM.

        Safe to run repeatedly; devices already attached are skipped.

        Returns:
            Number of devices attached
        """
        attached = 0
        with self._lock:
            logger.info("Guest is online, passing through devices")
            for record in self._store.current:
                if not self._store.is_connected(record):
                    continue
                try:
                    if self._vm.exists(record.vendor_id, record.product_id):
                        continue
                    logger.info(f"Passthrough device {record.display_name} is connected, adding to VM")
                    self._vm.add(record.vendor_id, record.product_id)
                    attached += 1
                except VMError as e:
                    logger.error(f"Failed to pass through {record.display_name}: {e}")
        return attached
