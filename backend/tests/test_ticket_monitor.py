from flightdesk.core.errors import SupplierTimeout
from flightdesk.models.domain import SupplierStatus
from flightdesk.services.ticket_monitor import TicketIssuanceMonitor


def paid_not_issued(machine, supplier, itinerary, contact, passengers):
    supplier.issue_responses.append(SupplierTimeout("slow"))
    booking = machine.create_booking(itinerary, owner_id="user-1", contact=contact)
    machine.save_passengers(booking.booking_id, passengers)
    return machine.confirm_payment(booking.booking_id, amount=500.0, currency="SYP", reference=booking.booking_id)


def test_sweep_recovers_booking_whose_webhook_was_lost(repository, machine, supplier, settings, itinerary, contact, passengers):
    booking = paid_not_issued(machine, supplier, itinerary, contact, passengers)
    assert booking.supplier_status == SupplierStatus.saved_not_issued
    monitor = TicketIssuanceMonitor(repository, machine, settings)

    report = monitor.sweep()

    assert (report.candidates, report.issued, report.errors) == (1, 1, 0)
    stored = machine.get_booking(booking.booking_id)
    assert stored.supplier_status == SupplierStatus.issued
    assert stored.ticket.record_locator == "ABC123"
    assert monitor.sweep().candidates == 0


def test_sweep_respects_batch_size_and_counts_outcomes(repository, machine, supplier, settings, itinerary, contact, passengers):
    for _ in range(3):
        paid_not_issued(machine, supplier, itinerary, contact, passengers)
    supplier.issue_responses.append(SupplierTimeout("still slow"))
    monitor = TicketIssuanceMonitor(repository, machine, settings.model_copy(update={"monitor_batch_size": 2}))

    report = monitor.sweep()

    assert report.candidates == 2
    assert (report.issued, report.still_pending) == (1, 1)
    assert monitor.status().sweeps == 1
    assert monitor.status().last_sweep is report


def test_sweep_skips_when_integration_disabled(repository, machine, settings):
    monitor = TicketIssuanceMonitor(repository, machine, settings.model_copy(update={"supplier_enabled": False}))

    report = monitor.sweep()

    assert report.candidates == 0
    assert report.as_dict()["issued"] == 0


def test_start_and_stop_background_thread(repository, machine, settings):
    monitor = TicketIssuanceMonitor(
        repository, machine, settings.model_copy(update={"monitor_interval_seconds": 60})
    )

    monitor.start()
    assert monitor.running is True
    assert monitor.status().running is True
    monitor.stop(timeout=2)

    assert monitor.running is False
    assert monitor.status().interval_seconds == 60
