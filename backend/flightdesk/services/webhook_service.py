from __future__ import annotations

import logging
from typing import Any, Dict

from flightdesk.services.booking_machine import BookingStateMachine

logger = logging.getLogger(__name__)

SUPPORTED_EVENTS = frozenset(
    {
        "order.created",
        "order.confirmed",
        "ticket.issued",
        "ticket.failed",
        "order.cancelled",
        "order.expired",
    }
)


class WebhookIngress:
    """
    Feeds supplier events into the booking machine.

    ``handle`` never raises: the supplier redelivers on anything but a 2xx, so
    failures are logged and acknowledged, and the monitor converges the
    booking later.
    """

    def __init__(self, machine: BookingStateMachine):
        self.machine = machine

    def handle(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            logger.warning("Webhook body is not an object: %r", payload)
            return {"received": True, "accepted": False, "reason": "invalid body"}

        event = payload.get("event")
        order_id = payload.get("order_id")
        if not event or not order_id:
            logger.warning("Webhook missing event or order_id: %s", payload)
            return {"received": True, "accepted": False, "reason": "missing event or order_id"}
        if event not in SUPPORTED_EVENTS:
            logger.info("Unhandled webhook event %s for order %s", event, order_id)
            return {"received": True, "accepted": False, "reason": f"unhandled event {event}"}

        try:
            booking = self.machine.apply_supplier_event(
                event, str(order_id), payload, booking_id=payload.get("booking_id")
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Webhook %s for order %s failed", event, order_id)
            return {"received": True, "accepted": False, "reason": str(exc)}

        logger.info(
            "Webhook %s applied to %s (status %s)",
            event, booking.booking_id, booking.supplier_status.value,
        )
        return {
            "received": True,
            "accepted": True,
            "booking_id": booking.booking_id,
            "supplier_status": booking.supplier_status.value,
        }
