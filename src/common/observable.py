"""
Observable state holders.

A value plus change notification, used to publish the connected device
snapshot, the passthrough list and the guest online flag to anything that
wants to follow them (CLI, UI layers, the reconciler).
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Observable(Generic[T]):
    """
    Thread-safe value holder with change callbacks.

    Subscribers are called as ``callback(old, new)`` after every ``set``
    that changes the value. Values are compared with ``==`` unless
    ``always_notify`` is set, so publishers must hand in a new object on
    every change instead of mutating the current one.

    Example:
        online = Observable(False)
        online.subscribe(lambda old, new: print(f"{old} -> {new}"))
        online.set(True)  # prints "False -> True"
    """

    def __init__(self, initial: T, always_notify: bool = False):
        self._value = initial
        self._always_notify = always_notify
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[T, T], None]] = []

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        """Replace the value and notify subscribers if it changed."""
        with self._lock:
            old = self._value
            self._value = value
            subscribers = list(self._subscribers)

        if not self._always_notify and old == value:
            return

        for callback in subscribers:
            try:
                callback(old, value)
            except Exception as e:
                logger.warning(f"Observable subscriber error: {e}")

    def subscribe(self, callback: Callable[[T, T], None]) -> Callable[[], None]:
        """
        Register a change callback.

        Returns:
            A function that removes the subscription when called
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
