from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from enum import Enum
from typing import List, Protocol, Tuple

from flightdesk.core.config import Settings
from flightdesk.models.domain import Booking

logger = logging.getLogger(__name__)


class Milestone(str, Enum):
    order_created = "order_created"
    ticket_issued = "ticket_issued"
    ticket_failed = "ticket_failed"
    order_cancelled = "order_cancelled"
    order_expired = "order_expired"


SUBJECTS = {
    Milestone.order_created: "Your booking {ref} has been reserved",
    Milestone.ticket_issued: "Your e-ticket for booking {ref} is ready",
    Milestone.ticket_failed: "We could not issue the ticket for booking {ref}",
    Milestone.order_cancelled: "Booking {ref} has been cancelled",
    Milestone.order_expired: "Booking {ref} has expired",
}


class Notifier(Protocol):
    def send(self, milestone: Milestone, booking: Booking) -> None:
        ...


def render_message(milestone: Milestone, booking: Booking) -> Tuple[str, str]:
    subject = SUBJECTS[milestone].format(ref=booking.booking_id)
    lines = [
        f"Hello {booking.contact.full_name or 'traveller'},",
        "",
        subject + ".",
        "",
        f"Booking: {booking.booking_id}",
    ]
    if booking.supplier_order_id:
        lines.append(f"Order: {booking.supplier_order_id}")
    if booking.ticket:
        lines.append(f"Ticket number: {booking.ticket.ticket_number}")
        lines.append(f"Airline reference (PNR): {booking.ticket.record_locator}")
        if booking.ticket.document_path:
            lines.append(f"E-ticket: {booking.ticket.document_path}")
    if milestone == Milestone.ticket_failed and booking.error:
        lines.append(f"Reason: {booking.error}")
    return subject, "\n".join(lines)


class LoggingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[Milestone, str]] = []

    def send(self, milestone: Milestone, booking: Booking) -> None:
        subject, _ = render_message(milestone, booking)
        self.sent.append((milestone, booking.booking_id))
        logger.info("Notification %s for %s: %s", milestone.value, booking.booking_id, subject)


class SmtpNotifier:
    """Plain-text email to the booking contact."""

    def __init__(self, host: str, port: int, user: str | None, password: str | None, sender: str):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender

    def send(self, milestone: Milestone, booking: Booking) -> None:
        if not booking.contact.email:
            logger.info("Booking %s has no contact email, skipping %s", booking.booking_id, milestone.value)
            return
        subject, body = render_message(milestone, booking)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = booking.contact.email
        msg.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=15) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)
        logger.info("Sent %s email for %s", milestone.value, booking.booking_id)


class NotificationDispatcher:
    """Fire-and-forget wrapper: a failed send is logged, never raised."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    def notify(self, milestone: Milestone, booking: Booking) -> bool:
        try:
            self.notifier.send(milestone, booking)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Notification %s failed for booking %s", milestone.value, booking.booking_id
            )
            return False
        return True


def build_notifier(settings: Settings) -> Notifier:
    if settings.notifier == "smtp" and settings.smtp_host:
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_from or settings.smtp_user or "no-reply@flightdesk.local",
        )
    if settings.notifier == "smtp":
        logger.warning("notifier=smtp but SMTP_HOST is not set; falling back to logging")
    return LoggingNotifier()
