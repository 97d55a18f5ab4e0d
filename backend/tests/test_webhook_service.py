from flightdesk.models.domain import SupplierStatus
from flightdesk.services.webhook_service import WebhookIngress


def saved_booking(machine, itinerary, contact, passengers):
    booking = machine.create_booking(itinerary, owner_id="user-1", contact=contact)
    return machine.save_passengers(booking.booking_id, passengers)


def test_ticket_issued_event_is_applied(machine, itinerary, contact, passengers):
    booking = saved_booking(machine, itinerary, contact, passengers)
    ingress = WebhookIngress(machine)

    result = ingress.handle(
        {"event": "ticket.issued", "order_id": "ORD-1", "data": {"ticket_number": "555", "pnr": "PNR1"}}
    )

    assert result == {
        "received": True,
        "accepted": True,
        "booking_id": booking.booking_id,
        "supplier_status": "issued",
    }
    assert machine.get_booking(booking.booking_id).ticket.ticket_number == "555"


def test_duplicate_delivery_is_acknowledged_without_change(machine, notifier, itinerary, contact, passengers):
    booking = saved_booking(machine, itinerary, contact, passengers)
    ingress = WebhookIngress(machine)
    event = {"event": "ticket.issued", "order_id": "ORD-1", "ticket_number": "555", "pnr": "PNR1"}

    ingress.handle(event)
    version = machine.get_booking(booking.booking_id).version
    second = ingress.handle(event)

    assert second["accepted"] is True
    assert machine.get_booking(booking.booking_id).version == version
    assert [m.value for m, _ in notifier.sent].count("ticket_issued") == 1


def test_late_confirmation_does_not_undo_issuance(machine, itinerary, contact, passengers):
    booking = saved_booking(machine, itinerary, contact, passengers)
    ingress = WebhookIngress(machine)

    ingress.handle({"event": "ticket.issued", "order_id": "ORD-1", "ticket_number": "555"})
    result = ingress.handle({"event": "order.confirmed", "order_id": "ORD-1"})

    assert result["supplier_status"] == "issued"
    assert machine.get_booking(booking.booking_id).supplier_status == SupplierStatus.issued


def test_ticket_failed_records_supplier_message(machine, itinerary, contact, passengers):
    booking = saved_booking(machine, itinerary, contact, passengers)

    WebhookIngress(machine).handle(
        {"event": "ticket.failed", "order_id": "ORD-1", "error_message": "fare no longer available"}
    )

    stored = machine.get_booking(booking.booking_id)
    assert stored.supplier_status == SupplierStatus.failed
    assert stored.error == "fare no longer available"


def test_malformed_and_unknown_deliveries_are_acknowledged(machine):
    ingress = WebhookIngress(machine)

    assert ingress.handle([1, 2])["accepted"] is False
    assert ingress.handle({"order_id": "ORD-1"})["reason"] == "missing event or order_id"
    assert ingress.handle({"event": "order.refunded", "order_id": "ORD-1"})["accepted"] is False
    unknown = ingress.handle({"event": "order.confirmed", "order_id": "ORD-404"})
    assert unknown["received"] is True
    assert unknown["accepted"] is False


def test_confirmation_arriving_before_save_links_order_by_booking_id(machine, itinerary, contact):
    booking = machine.create_booking(itinerary, owner_id="user-1", contact=contact)

    result = WebhookIngress(machine).handle(
        {"event": "order.confirmed", "order_id": "ORD-9", "booking_id": booking.booking_id}
    )

    assert result["accepted"] is True
    assert result["supplier_status"] == "confirmed"
    assert machine.get_booking(booking.booking_id).supplier_order_id == "ORD-9"
