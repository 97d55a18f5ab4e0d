"""
Booking lifecycle.

Every transition runs under the per-booking lock: load the current document,
check the guard, call the supplier if needed, write back with a version
check. Three callers drive the same transitions concurrently: the request
path, webhook deliveries and the ticket issuance monitor. Each transition
checks current state first so that repeating it is harmless.

Supplier status moves forward only. Terminal statuses (issued, failed,
cancelled, expired) are never replaced by a later event; the one exception
is a ticket that the supplier reports as issued after we had given up on it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from flightdesk.core.config import Settings
from flightdesk.core.errors import (
    ConcurrencyConflict,
    FlightDeskError,
    InvalidTransition,
    NotFoundError,
    SupplierRejected,
    TransportError,
)
from flightdesk.models.domain import (
    BOOKING_STATUS_RANK,
    ISSUABLE_SUPPLIER_STATUSES,
    SUPPLIER_STATUS_RANK,
    TERMINAL_SUPPLIER_STATUSES,
    Booking,
    BookingStatus,
    Contact,
    FlightSnapshot,
    Itinerary,
    Passenger,
    PaymentStatus,
    PaymentTransaction,
    SupplierStatus,
    TicketDetails,
    TicketStatus,
)
from flightdesk.services.notifications import (
    LoggingNotifier,
    Milestone,
    NotificationDispatcher,
)
from flightdesk.storage.locks import BookingLocks
from flightdesk.storage.repository import InMemoryRepository
from flightdesk.supplier.client import SupplierClient, parse_order_status, parse_ticket
from flightdesk.supplier.payloads import booking_payload, contact_payload, passenger_payloads

logger = logging.getLogger(__name__)

ISSUED_ORDER_STATUSES = ("issued", "ticketed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Outcome:
    milestones: List[Milestone] = field(default_factory=list)
    error: Optional[FlightDeskError] = None


Step = Callable[[Booking], Optional[_Outcome]]


class BookingStateMachine:
    def __init__(
        self,
        repository: InMemoryRepository,
        client: SupplierClient,
        settings: Settings,
        locks: Optional[BookingLocks] = None,
        notifications: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.client = client
        self.settings = settings
        self.locks = locks or BookingLocks(timeout=settings.lock_timeout_seconds)
        self.notifications = notifications or NotificationDispatcher(LoggingNotifier())
        self.clock = clock

    # plumbing

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def _run(self, booking_id: str, step: Step) -> Booking:
        """
        Apply ``step`` to the current booking under its lock. A step returns
        None when nothing changed; otherwise the booking is written back and
        the outcome's milestones are dispatched after the lock is released.
        """
        retries = self.settings.conflict_retries
        for attempt in range(1, retries + 1):
            try:
                with self.locks.hold(booking_id):
                    booking = self.get_booking(booking_id)
                    outcome = step(booking)
                    if outcome is not None:
                        self.repository.save_booking(booking)
                break
            except ConcurrencyConflict:
                if attempt >= retries:
                    raise
                logger.info("Conflict on booking %s, retrying (%s/%s)", booking_id, attempt, retries)

        if outcome is not None:
            for milestone in outcome.milestones:
                self.notifications.notify(milestone, booking)
            if outcome.error is not None:
                raise outcome.error
        return booking

    def _integration_ready(self, booking: Booking) -> bool:
        if not self.settings.supplier_enabled:
            booking.error = "Supplier integration disabled; booking kept locally."
            return False
        if not self.settings.supplier_configured:
            booking.error = "Supplier credentials not configured."
            return False
        return True

    def _set_supplier_status(self, booking: Booking, new: SupplierStatus) -> bool:
        current = booking.supplier_status
        if current == new:
            return False
        if current in TERMINAL_SUPPLIER_STATUSES:
            if not (current == SupplierStatus.failed and new == SupplierStatus.issued):
                logger.info(
                    "Booking %s is %s; ignoring move to %s",
                    booking.booking_id, current.value, new.value,
                )
                return False
        elif new not in TERMINAL_SUPPLIER_STATUSES:
            current_rank = SUPPLIER_STATUS_RANK[current]
            new_rank = SUPPLIER_STATUS_RANK[new]
            # saved_not_issued sits beside confirmed; anything else must rank higher
            if new_rank < current_rank or (
                new_rank == current_rank and new != SupplierStatus.saved_not_issued
            ):
                logger.info(
                    "Booking %s ignoring stale move %s -> %s",
                    booking.booking_id, current.value, new.value,
                )
                return False
        logger.info("Booking %s supplier status %s -> %s", booking.booking_id, current.value, new.value)
        booking.supplier_status = new
        booking.timestamps[new.value] = self.clock()
        return True

    def _raise_status(self, booking: Booking, new: BookingStatus) -> None:
        if BOOKING_STATUS_RANK[new] > BOOKING_STATUS_RANK[booking.status]:
            booking.status = new

    def _mark_issued(self, booking: Booking, ticket: TicketDetails) -> _Outcome:
        if not self._set_supplier_status(booking, SupplierStatus.issued):
            return _Outcome()
        booking.ticket = ticket
        booking.ticket_status = TicketStatus.issued
        booking.error = None
        self._raise_status(booking, BookingStatus.issued)
        logger.info(
            "Booking %s ticketed: %s / %s",
            booking.booking_id, ticket.ticket_number, ticket.record_locator,
        )
        return _Outcome(milestones=[Milestone.ticket_issued])

    def _reconcile_from_order(self, booking: Booking) -> Optional[_Outcome]:
        """Ask the supplier whether the order already carries a ticket."""
        try:
            details = self.client.get_order_details(booking.supplier_order_id)
        except FlightDeskError as exc:
            logger.warning("Order details lookup failed for %s: %s", booking.booking_id, exc)
            return None
        ticket = parse_ticket(details)
        if ticket is None:
            if parse_order_status(details) in ISSUED_ORDER_STATUSES:
                logger.warning(
                    "Order %s reports issued but carries no ticket number",
                    booking.supplier_order_id,
                )
            return None
        return self._mark_issued(booking, ticket)

    # cart and fare check

    def create_booking(self, itinerary: Itinerary, owner_id: str, contact: Contact) -> Booking:
        now = self.clock()
        booking = Booking(
            booking_id=self.repository.next_booking_id(),
            owner_id=owner_id,
            contact=contact,
            flight=FlightSnapshot(
                itinerary=itinerary,
                fare_key=itinerary.fare_key,
                fare_brand=itinerary.fare_brand,
                raw=itinerary.raw,
            ),
            created_at=now,
            timestamps={"created": now},
        )
        self.repository.insert_booking(booking)
        logger.info("Created booking %s for itinerary %s", booking.booking_id, itinerary.itinerary_id)
        return self.check_fare(booking.booking_id)

    def check_fare(self, booking_id: str) -> Booking:
        """Best effort: a failure annotates the booking and leaves it pending."""

        def step(booking: Booking) -> Optional[_Outcome]:
            if booking.supplier_status != SupplierStatus.pending:
                return None
            if not self._integration_ready(booking):
                return _Outcome()
            try:
                self.client.check_fare(booking_payload(booking, self.settings.supplier_source))
            except FlightDeskError as exc:
                logger.warning("Fare check failed for %s: %s", booking.booking_id, exc)
                booking.error = f"Fare check failed: {exc}"
                return _Outcome()
            self._set_supplier_status(booking, SupplierStatus.initiated)
            booking.timestamps["fare_checked"] = self.clock()
            booking.error = None
            return _Outcome()

        return self._run(booking_id, step)

    # save

    def save_passengers(
        self, booking_id: str, passengers: List[Passenger], contact: Optional[Contact] = None
    ) -> Booking:
        def step(booking: Booking) -> Optional[_Outcome]:
            if booking.supplier_order_id:
                logger.info(
                    "Booking %s already has order %s; save skipped",
                    booking.booking_id, booking.supplier_order_id,
                )
                return None
            if booking.supplier_status in TERMINAL_SUPPLIER_STATUSES:
                raise InvalidTransition(
                    f"Booking {booking.booking_id} is {booking.supplier_status.value}"
                )
            effective_contact = contact or booking.contact
            passenger_records = passenger_payloads(passengers, booking.flight.itinerary.passengers)
            contact_record = contact_payload(effective_contact)

            booking.passengers = list(passengers)
            booking.contact = effective_contact
            if not self._integration_ready(booking):
                return _Outcome()
            if not booking.fare_key:
                booking.error = "No fare key from the search result; booking kept locally."
                return _Outcome()

            try:
                order_id = self.client.save_order(
                    booking_payload(booking, self.settings.supplier_source),
                    passenger_records,
                    contact_record,
                )
            except (TransportError, SupplierRejected, NotFoundError) as exc:
                logger.warning("Order save failed for %s: %s", booking.booking_id, exc)
                booking.error = f"Save failed: {exc}"
                return _Outcome(error=exc)

            booking.supplier_order_id = order_id
            self._set_supplier_status(booking, SupplierStatus.new)
            booking.timestamps["saved"] = self.clock()
            booking.error = None
            return _Outcome(milestones=[Milestone.order_created])

        return self._run(booking_id, step)

    # payment and issuance

    def confirm_payment(
        self,
        booking_id: str,
        amount: float,
        currency: str,
        reference: str,
        success: bool = True,
    ) -> Booking:
        """Record a verified gateway callback; a success triggers issuance."""
        completed_now: List[bool] = []

        def step(booking: Booking) -> Optional[_Outcome]:
            payment = booking.payment
            if any(t.reference == reference for t in payment.transactions):
                logger.info("Payment %s already recorded on %s", reference, booking.booking_id)
                return None
            now = self.clock()
            payment.transactions.append(
                PaymentTransaction(
                    date=now,
                    amount=amount,
                    type="payment" if success else "failed_payment",
                    reference=reference,
                )
            )
            if not success:
                if booking.payment_status != PaymentStatus.completed:
                    booking.payment_status = PaymentStatus.failed
                    payment.status = PaymentStatus.failed
                return _Outcome()
            if booking.payment_status == PaymentStatus.completed:
                return _Outcome()
            booking.payment_status = PaymentStatus.completed
            payment.status = PaymentStatus.completed
            payment.amount = amount
            payment.currency = currency
            payment.reference = reference
            booking.timestamps["payment_completed"] = now
            self._raise_status(booking, BookingStatus.confirmed)
            completed_now.append(True)
            return _Outcome()

        booking = self._run(booking_id, step)
        if not completed_now:
            return booking
        if not booking.supplier_order_id or booking.supplier_status not in ISSUABLE_SUPPLIER_STATUSES:
            logger.info(
                "Booking %s paid but not issuable yet (%s)",
                booking.booking_id, booking.supplier_status.value,
            )
            return booking
        return self.issue_ticket(booking_id)

    def issue_ticket(self, booking_id: str) -> Booking:
        """
        Issue the saved order. Safe to repeat: an issued booking is returned
        untouched, and a supplier rejection is reconciled against the order
        before it counts as a failure.
        """

        def step(booking: Booking) -> Optional[_Outcome]:
            if booking.supplier_status == SupplierStatus.issued:
                return None
            if booking.payment_status != PaymentStatus.completed:
                raise InvalidTransition("Payment has not been confirmed for this booking")
            if not booking.supplier_order_id:
                raise InvalidTransition("Booking has no supplier order to issue")
            if booking.supplier_status not in ISSUABLE_SUPPLIER_STATUSES:
                raise InvalidTransition(
                    f"Cannot issue a booking in status {booking.supplier_status.value}"
                )
            if not self._integration_ready(booking):
                return _Outcome()

            booking.issue_attempts += 1
            booking.timestamps["issue_attempted"] = self.clock()
            try:
                response = self.client.issue_order(booking.supplier_order_id)
            except TransportError as exc:
                return self._issue_failed(booking, f"Ticket issuance failed: {exc}")
            except (SupplierRejected, NotFoundError) as exc:
                reconciled = self._reconcile_from_order(booking)
                if reconciled is not None:
                    return reconciled
                return self._issue_failed(booking, f"Ticket issuance rejected: {exc}")

            ticket = parse_ticket(response)
            if ticket is None:
                reconciled = self._reconcile_from_order(booking)
                if reconciled is not None:
                    return reconciled
                return self._issue_failed(booking, "Issue response carried no ticket number")
            return self._mark_issued(booking, ticket)

        return self._run(booking_id, step)

    def _issue_failed(self, booking: Booking, message: str) -> _Outcome:
        logger.warning(
            "Booking %s issuance attempt %s failed: %s",
            booking.booking_id, booking.issue_attempts, message,
        )
        booking.error = message
        if booking.issue_attempts >= self.settings.monitor_max_issue_attempts:
            self._set_supplier_status(booking, SupplierStatus.failed)
            booking.error = f"{message} (gave up after {booking.issue_attempts} attempts)"
            return _Outcome(milestones=[Milestone.ticket_failed])
        self._set_supplier_status(booking, SupplierStatus.saved_not_issued)
        return _Outcome()

    # supplier events

    def apply_supplier_event(
        self, event: str, order_id: str, payload: Dict[str, Any], booking_id: Optional[str] = None
    ) -> Booking:
        booking = self.repository.find_by_order_id(order_id)
        if booking is None and booking_id:
            booking = self.repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"No booking for order {order_id}")

        def step(booking: Booking) -> Optional[_Outcome]:
            if booking.supplier_order_id and booking.supplier_order_id != order_id:
                logger.warning(
                    "Event %s for order %s does not match booking %s order %s",
                    event, order_id, booking.booking_id, booking.supplier_order_id,
                )
                return None
            if booking.supplier_order_id:
                return self._apply_event(booking, event, order_id, payload)

            # an event names the order, so the supplier has saved this booking
            if booking.supplier_status in TERMINAL_SUPPLIER_STATUSES:
                logger.info(
                    "Event %s for order %s ignored; booking %s is %s without an order",
                    event, order_id, booking.booking_id, booking.supplier_status.value,
                )
                return None
            linked = self._link_order(booking, order_id)
            outcome = self._apply_event(booking, event, order_id, payload)
            if outcome is not None:
                linked.milestones.extend(outcome.milestones)
            return linked

        return self._run(booking.booking_id, step)

    def _link_order(self, booking: Booking, order_id: str) -> _Outcome:
        booking.supplier_order_id = order_id
        self._set_supplier_status(booking, SupplierStatus.saved)
        booking.timestamps.setdefault("saved", self.clock())
        logger.info("Booking %s linked to order %s from a supplier event", booking.booking_id, order_id)
        return _Outcome(milestones=[Milestone.order_created])

    def _apply_event(
        self, booking: Booking, event: str, order_id: str, payload: Dict[str, Any]
    ) -> Optional[_Outcome]:
        if event == "order.created":
            if self._set_supplier_status(booking, SupplierStatus.saved):
                return _Outcome(milestones=[Milestone.order_created])
            return None

        if event == "order.confirmed":
            return _Outcome() if self._set_supplier_status(booking, SupplierStatus.confirmed) else None

        if event == "ticket.issued":
            if booking.supplier_status == SupplierStatus.issued:
                return None
            ticket = parse_ticket(payload)
            if ticket is not None:
                outcome = self._mark_issued(booking, ticket)
                return outcome if outcome.milestones else None
            # no ticket data in the event; the order itself may have it
            return self._reconcile_from_order(booking)

        if event == "ticket.failed":
            if not self._set_supplier_status(booking, SupplierStatus.failed):
                return None
            booking.error = str(payload.get("error_message") or "Ticket issuance failed at supplier")
            return _Outcome(milestones=[Milestone.ticket_failed])

        if event == "order.cancelled":
            if not self._set_supplier_status(booking, SupplierStatus.cancelled):
                return None
            return _Outcome(milestones=[Milestone.order_cancelled])

        if event == "order.expired":
            if not self._set_supplier_status(booking, SupplierStatus.expired):
                return None
            return _Outcome(milestones=[Milestone.order_expired])

        logger.info("Ignoring unknown supplier event %s for order %s", event, order_id)
        return None

    # post-sale operations

    def cancel_booking(self, booking_id: str) -> Booking:
        def step(booking: Booking) -> Optional[_Outcome]:
            status = booking.supplier_status
            if status in (SupplierStatus.cancelled, SupplierStatus.expired):
                return None
            if status == SupplierStatus.issued:
                raise InvalidTransition("Issued tickets must be voided or refunded instead")
            if booking.supplier_order_id and self._integration_ready(booking):
                try:
                    self.client.cancel_order(booking.supplier_order_id)
                except (TransportError, SupplierRejected, NotFoundError) as exc:
                    logger.warning("Cancel failed for %s: %s", booking.booking_id, exc)
                    booking.error = f"Cancel failed: {exc}"
                    return _Outcome(error=exc)
            self._set_supplier_status(booking, SupplierStatus.cancelled)
            return _Outcome(milestones=[Milestone.order_cancelled])

        return self._run(booking_id, step)

    def _ticket_operation(
        self,
        booking_id: str,
        target: TicketStatus,
        call: Callable[[str], Dict[str, Any]],
    ) -> Booking:
        def step(booking: Booking) -> Optional[_Outcome]:
            if booking.supplier_status != SupplierStatus.issued or booking.ticket is None:
                raise InvalidTransition("Booking has no issued ticket")
            if booking.ticket_status != TicketStatus.issued:
                raise InvalidTransition(f"Ticket is already {booking.ticket_status.value}")
            if not self._integration_ready(booking):
                raise InvalidTransition(booking.error)
            call(booking.ticket.ticket_id or booking.ticket.ticket_number)
            booking.ticket_status = target
            booking.timestamps[target.value] = self.clock()
            logger.info("Booking %s ticket %s", booking.booking_id, target.value)
            return _Outcome()

        return self._run(booking_id, step)

    def refund_ticket(
        self,
        booking_id: str,
        legs: Optional[List[Any]] = None,
        total_fees: Optional[float] = None,
    ) -> Booking:
        return self._ticket_operation(
            booking_id,
            TicketStatus.refunded,
            lambda ticket_id: self.client.refund_ticket(ticket_id, legs=legs, total_fees=total_fees),
        )

    def void_ticket(self, booking_id: str) -> Booking:
        return self._ticket_operation(booking_id, TicketStatus.voided, self.client.void_ticket)

    def exchange_ticket(
        self,
        booking_id: str,
        exchange_legs: List[Any],
        total_fees: Optional[float] = None,
    ) -> Booking:
        return self._ticket_operation(
            booking_id,
            TicketStatus.exchanged,
            lambda ticket_id: self.client.exchange_ticket(
                ticket_id, exchange_legs, total_fees=total_fees
            ),
        )

    def order_details(self, booking_id: str) -> Dict[str, Any]:
        booking = self.get_booking(booking_id)
        if not booking.supplier_order_id:
            raise NotFoundError(f"Booking {booking_id} has no supplier order yet")
        return self.client.get_order_details(booking.supplier_order_id)
