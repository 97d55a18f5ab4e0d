from __future__ import annotations

import copy
import itertools
import threading
from typing import Dict, List, Optional

from flightdesk.core.errors import ConcurrencyConflict, PersistenceError
from flightdesk.models.domain import (
    ISSUABLE_SUPPLIER_STATUSES,
    Booking,
    PaymentStatus,
)


class InMemoryRepository:
    """
    Document-per-booking store.

    Reads hand out copies; ``save`` is a compare-and-swap on ``version`` so a
    writer holding a stale copy gets ``ConcurrencyConflict`` instead of
    clobbering a newer write.
    """

    def __init__(self, id_prefix: str = "FB", id_start: int = 1001) -> None:
        self.bookings: Dict[str, Booking] = {}
        self.id_prefix = id_prefix
        self._counter = itertools.count(id_start)
        self._lock = threading.Lock()

    def next_booking_id(self) -> str:
        with self._lock:
            return f"{self.id_prefix}-{next(self._counter)}"

    def insert_booking(self, booking: Booking) -> Booking:
        with self._lock:
            if booking.booking_id in self.bookings:
                raise PersistenceError(f"Booking {booking.booking_id} already exists")
            booking.version = 1
            self.bookings[booking.booking_id] = copy.deepcopy(booking)
        return booking

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            booking = self.bookings.get(booking_id)
            return copy.deepcopy(booking) if booking else None

    def save_booking(self, booking: Booking) -> Booking:
        with self._lock:
            current = self.bookings.get(booking.booking_id)
            if current is None:
                raise PersistenceError(f"Booking {booking.booking_id} does not exist")
            if current.version != booking.version:
                raise ConcurrencyConflict(
                    f"Booking {booking.booking_id} changed (version {current.version}, "
                    f"write based on {booking.version})"
                )
            booking.version += 1
            self.bookings[booking.booking_id] = copy.deepcopy(booking)
        return booking

    def find_by_order_id(self, order_id: str) -> Optional[Booking]:
        with self._lock:
            for booking in self.bookings.values():
                if booking.supplier_order_id == order_id:
                    return copy.deepcopy(booking)
        return None

    def find_issuance_candidates(self, limit: int = 10) -> List[Booking]:
        """Payment completed, order saved, ticket not yet issued. Oldest first."""
        with self._lock:
            matches = [
                b
                for b in self.bookings.values()
                if b.payment_status == PaymentStatus.completed
                and b.supplier_order_id
                and b.supplier_status in ISSUABLE_SUPPLIER_STATUSES
            ]
            matches.sort(key=lambda b: b.created_at)
            return [copy.deepcopy(b) for b in matches[:limit]]

    def list_bookings(self, owner_id: Optional[str] = None) -> List[Booking]:
        with self._lock:
            return [
                copy.deepcopy(b)
                for b in self.bookings.values()
                if owner_id is None or b.owner_id == owner_id
            ]
