from typing import Any, Dict

from fastapi import APIRouter, Depends

from flightdesk.api import get_booking_machine, get_supplier_client
from flightdesk.core.errors import ValidationError
from flightdesk.models.domain import PassengerCount
from flightdesk.models.schemas import (
    BookingSchema,
    BookingStatusSummary,
    CartRequest,
    ExchangeRequest,
    RefundRequest,
    SavePassengersRequest,
    TicketRetrieveRequest,
)
from flightdesk.services.booking_machine import BookingStateMachine
from flightdesk.supplier.client import SupplierClient
from flightdesk.supplier.normalizer import FarePolicy, normalize_itinerary

router = APIRouter()


@router.post("/cart", response_model=BookingSchema, status_code=201)
def add_to_cart(
    body: CartRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingSchema:
    passengers = PassengerCount(adults=body.adults, children=body.children, infants=body.infants)
    itinerary = normalize_itinerary(
        body.itinerary,
        FarePolicy.from_settings(machine.settings),
        passengers=passengers,
        search_id=body.search_id,
    )
    if itinerary is None:
        raise ValidationError("Itinerary has no trip_id")
    booking = machine.create_booking(itinerary, owner_id=body.owner_id, contact=body.contact.to_domain())
    return BookingSchema.from_domain(booking)


@router.get("/bookings/{booking_id}", response_model=BookingSchema)
def get_booking(
    booking_id: str,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingSchema:
    return BookingSchema.from_domain(machine.get_booking(booking_id))


@router.get("/bookings/{booking_id}/status", response_model=BookingStatusSummary)
def booking_status(
    booking_id: str,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingStatusSummary:
    return BookingStatusSummary.from_domain(machine.get_booking(booking_id))


@router.post("/bookings/{booking_id}/passengers", response_model=BookingSchema)
def save_passengers(
    booking_id: str,
    body: SavePassengersRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingSchema:
    booking = machine.save_passengers(
        booking_id,
        [p.to_domain() for p in body.passengers],
        contact=body.contact.to_domain() if body.contact else None,
    )
    return BookingSchema.from_domain(booking)


@router.post("/bookings/{booking_id}/issue", response_model=BookingSchema)
def retry_issue(
    booking_id: str,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingSchema:
    return BookingSchema.from_domain(machine.issue_ticket(booking_id))


@router.post("/bookings/{booking_id}/cancel", response_model=BookingSchema)
def cancel_booking(
    booking_id: str,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingSchema:
    return BookingSchema.from_domain(machine.cancel_booking(booking_id))


@router.post("/bookings/{booking_id}/tickets/refund", response_model=BookingSchema)
def refund_ticket(
    booking_id: str,
    body: RefundRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingSchema:
    booking = machine.refund_ticket(booking_id, legs=body.legs, total_fees=body.total_fees)
    return BookingSchema.from_domain(booking)


@router.post("/bookings/{booking_id}/tickets/void", response_model=BookingSchema)
def void_ticket(
    booking_id: str,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingSchema:
    return BookingSchema.from_domain(machine.void_ticket(booking_id))


@router.post("/bookings/{booking_id}/tickets/exchange", response_model=BookingSchema)
def exchange_ticket(
    booking_id: str,
    body: ExchangeRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> BookingSchema:
    booking = machine.exchange_ticket(booking_id, body.exchange_legs, total_fees=body.total_fees)
    return BookingSchema.from_domain(booking)


@router.get("/bookings/{booking_id}/order")
def order_details(
    booking_id: str,
    machine: BookingStateMachine = Depends(get_booking_machine),
) -> Dict[str, Any]:
    return machine.order_details(booking_id)


@router.get("/tickets/{ticket_id}")
def ticket_details(
    ticket_id: str,
    client: SupplierClient = Depends(get_supplier_client),
) -> Dict[str, Any]:
    return client.get_ticket_details(ticket_id)


@router.post("/tickets/retrieve")
def retrieve_ticket(
    body: TicketRetrieveRequest,
    client: SupplierClient = Depends(get_supplier_client),
) -> Dict[str, Any]:
    return client.retrieve_ticket(body.airline_pnr, body.last_name)
