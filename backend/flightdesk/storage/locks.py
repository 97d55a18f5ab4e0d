from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from flightdesk.core.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


class BookingLocks:
    """
    In-process mutual exclusion keyed by booking id.

    The request path, webhook deliveries and the monitor all go through
    ``hold()`` before reading and writing a booking's status fields.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, booking_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(booking_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[booking_id] = lock
            return lock

    @contextmanager
    def hold(self, booking_id: str, timeout: float | None = None) -> Iterator[None]:
        lock = self._lock_for(booking_id)
        wait = self.timeout if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            logger.warning("Could not lock booking %s within %.1fs", booking_id, wait)
            raise ConcurrencyConflict(f"Booking {booking_id} is busy")
        try:
            yield
        finally:
            lock.release()

    def is_held(self, booking_id: str) -> bool:
        return self._lock_for(booking_id).locked()
