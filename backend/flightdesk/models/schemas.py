from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from flightdesk.models.domain import (
    Booking,
    BookingStatus,
    Contact,
    FlightSegment,
    Itinerary,
    Leg,
    Passenger,
    PassengerCount,
    PassengerType,
    PaymentStatus,
    SearchRequest,
    SearchSegment,
    SearchState,
    SupplierStatus,
    TicketDetails,
    TicketStatus,
)
from flightdesk.services.search_aggregator import MultiCitySearch, SearchSession
from flightdesk.services.ticket_monitor import MonitorStatus
from flightdesk.supplier.normalizer import format_duration


class SearchSegmentIn(BaseModel):
    origin: str = Field(min_length=3, max_length=3)
    destination: str = Field(min_length=3, max_length=3)
    date: date


class FlightSearchRequest(BaseModel):
    segments: List[SearchSegmentIn] = Field(min_length=1)
    adults: int = 1
    children: int = 0
    infants: int = 0
    cabin: str = "e"
    direct: bool = False

    def to_domain(self) -> SearchRequest:
        return SearchRequest(
            segments=[
                SearchSegment(origin=s.origin.upper(), destination=s.destination.upper(), date=s.date)
                for s in self.segments
            ],
            passengers=PassengerCount(
                adults=self.adults, children=self.children, infants=self.infants
            ),
            cabin=self.cabin,
            direct=self.direct,
        )


class FlightSegmentSchema(BaseModel):
    carrier_code: str
    carrier_name: str
    flight_number: str
    origin: str
    destination: str
    departure: Optional[datetime] = None
    arrival: Optional[datetime] = None
    duration_minutes: int
    duration: str
    cabin_name: str

    @classmethod
    def from_domain(cls, obj: FlightSegment) -> "FlightSegmentSchema":
        return cls(
            carrier_code=obj.carrier_code,
            carrier_name=obj.carrier_name,
            flight_number=obj.flight_number,
            origin=obj.origin,
            destination=obj.destination,
            departure=obj.departure,
            arrival=obj.arrival,
            duration_minutes=obj.duration_minutes,
            duration=format_duration(obj.duration_minutes),
            cabin_name=obj.cabin_name,
        )


class LegSchema(BaseModel):
    leg_id: str
    segments: List[FlightSegmentSchema]
    cabin_name: str
    duration_minutes: int
    duration: str
    stops: List[str]
    stops_count: int

    @classmethod
    def from_domain(cls, obj: Leg) -> "LegSchema":
        return cls(
            leg_id=obj.leg_id,
            segments=[FlightSegmentSchema.from_domain(s) for s in obj.segments],
            cabin_name=obj.cabin_name,
            duration_minutes=obj.duration_minutes,
            duration=format_duration(obj.duration_minutes),
            stops=obj.stops,
            stops_count=obj.stops_count,
        )


class PassengerFareSchema(BaseModel):
    label: str
    price: float
    tax: float
    total: float


class ItinerarySchema(BaseModel):
    itinerary_id: str
    search_id: str
    legs: List[LegSchema]
    price: float
    tax: float
    currency: str
    price_breakdowns: Dict[str, PassengerFareSchema]
    total_price: float
    price_per_pax: float
    fare_key: str
    fare_brand: str
    refundable_info: str
    can_hold: bool
    can_void: bool
    can_refund: bool
    can_exchange: bool
    baggage_allowance: str
    cabin_name: str
    carrier_code: str
    carrier_name: str
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, obj: Itinerary, include_raw: bool = True) -> "ItinerarySchema":
        return cls(
            itinerary_id=obj.itinerary_id,
            search_id=obj.search_id,
            legs=[LegSchema.from_domain(leg) for leg in obj.legs],
            price=obj.price,
            tax=obj.tax,
            currency=obj.currency,
            price_breakdowns={
                k: PassengerFareSchema(label=v.label, price=v.price, tax=v.tax, total=v.total)
                for k, v in obj.price_breakdowns.items()
            },
            total_price=obj.total_price,
            price_per_pax=obj.price_per_pax,
            fare_key=obj.fare_key,
            fare_brand=obj.fare_brand,
            refundable_info=obj.refundable_info,
            can_hold=obj.can_hold,
            can_void=obj.can_void,
            can_refund=obj.can_refund,
            can_exchange=obj.can_exchange,
            baggage_allowance=obj.baggage_allowance,
            cabin_name=obj.cabin_name,
            carrier_code=obj.carrier_code,
            carrier_name=obj.carrier_name,
            raw=obj.raw if include_raw else {},
        )


class SearchSectionSchema(BaseModel):
    index: int
    origin: str
    destination: str
    departure_date: date
    search_id: Optional[str] = None
    state: SearchState
    completion: float
    itineraries: List[ItinerarySchema]
    message: Optional[str] = None
    retries: int = 0

    @classmethod
    def from_session(cls, index: int, session: SearchSession, retries: int = 0) -> "SearchSectionSchema":
        segment = session.request.segments[0]
        return cls(
            index=index,
            origin=segment.origin,
            destination=segment.destination,
            departure_date=segment.date,
            search_id=session.search_id,
            state=session.state,
            completion=session.completion,
            itineraries=[ItinerarySchema.from_domain(i) for i in session.results()],
            message=session.message,
            retries=retries,
        )


class FlightSearchResponse(BaseModel):
    """``any_polling`` is false once the search has run to completion; kept for clients that poll."""

    sections: List[SearchSectionSchema]
    any_polling: bool

    @classmethod
    def from_search(cls, search: MultiCitySearch) -> "FlightSearchResponse":
        return cls(
            sections=[
                SearchSectionSchema.from_session(i, s, search.retries[i])
                for i, s in enumerate(search.sessions)
            ],
            any_polling=search.any_polling,
        )


class ContactSchema(BaseModel):
    full_name: str = ""
    email: str = ""
    mobile: str = ""

    def to_domain(self) -> Contact:
        return Contact(full_name=self.full_name, email=self.email, mobile=self.mobile)

    @classmethod
    def from_domain(cls, obj: Contact) -> "ContactSchema":
        return cls(full_name=obj.full_name, email=obj.email, mobile=obj.mobile)


class PassengerSchema(BaseModel):
    first_name: str
    last_name: str
    gender: str = "M"
    birth_date: Optional[date] = None
    type: PassengerType = PassengerType.adult
    document_type: str = "PP"
    document_number: str = ""
    document_issue_date: Optional[date] = None
    document_expiry: Optional[date] = None
    document_country: str = ""
    nationality: str = ""
    email: str = ""
    phone: str = ""

    def to_domain(self) -> Passenger:
        return Passenger(**self.model_dump())


class CartRequest(BaseModel):
    """``itinerary`` is the supplier item as returned in a search result's ``raw``."""

    itinerary: Dict[str, Any]
    search_id: Optional[str] = None
    owner_id: str = "guest"
    adults: int = 1
    children: int = 0
    infants: int = 0
    contact: ContactSchema = Field(default_factory=ContactSchema)


class SavePassengersRequest(BaseModel):
    passengers: List[PassengerSchema] = Field(min_length=1)
    contact: Optional[ContactSchema] = None


class TicketSchema(BaseModel):
    ticket_number: str
    record_locator: str
    document_path: str
    ticket_id: str

    @classmethod
    def from_domain(cls, obj: TicketDetails) -> "TicketSchema":
        return cls(
            ticket_number=obj.ticket_number,
            record_locator=obj.record_locator,
            document_path=obj.document_path,
            ticket_id=obj.ticket_id,
        )


class BookingSchema(BaseModel):
    booking_id: str
    owner_id: str
    status: BookingStatus
    supplier_status: SupplierStatus
    supplier_order_id: Optional[str] = None
    payment_status: PaymentStatus
    payment_amount: float
    payment_currency: str
    ticket_status: TicketStatus
    ticket: Optional[TicketSchema] = None
    error: Optional[str] = None
    issue_attempts: int
    created_at: datetime
    contact: ContactSchema
    passengers: int
    itinerary: ItinerarySchema

    @classmethod
    def from_domain(cls, obj: Booking) -> "BookingSchema":
        return cls(
            booking_id=obj.booking_id,
            owner_id=obj.owner_id,
            status=obj.status,
            supplier_status=obj.supplier_status,
            supplier_order_id=obj.supplier_order_id,
            payment_status=obj.payment_status,
            payment_amount=obj.payment.amount,
            payment_currency=obj.payment.currency,
            ticket_status=obj.ticket_status,
            ticket=TicketSchema.from_domain(obj.ticket) if obj.ticket else None,
            error=obj.error,
            issue_attempts=obj.issue_attempts,
            created_at=obj.created_at,
            contact=ContactSchema.from_domain(obj.contact),
            passengers=len(obj.passengers),
            itinerary=ItinerarySchema.from_domain(obj.flight.itinerary, include_raw=False),
        )


class BookingStatusSummary(BaseModel):
    booking_id: str
    supplier_status: SupplierStatus
    supplier_linked: bool
    ticket_issued: bool
    ticket_number: Optional[str] = None
    pnr: Optional[str] = None
    order_id: Optional[str] = None
    error: Optional[str] = None
    timestamps: Dict[str, datetime]

    @classmethod
    def from_domain(cls, obj: Booking) -> "BookingStatusSummary":
        return cls(
            booking_id=obj.booking_id,
            supplier_status=obj.supplier_status,
            supplier_linked=bool(obj.supplier_order_id),
            ticket_issued=obj.supplier_status == SupplierStatus.issued,
            ticket_number=obj.ticket.ticket_number if obj.ticket else None,
            pnr=obj.ticket.record_locator if obj.ticket else None,
            order_id=obj.supplier_order_id,
            error=obj.error,
            timestamps=dict(obj.timestamps),
        )


class RefundRequest(BaseModel):
    legs: List[Any] = Field(default_factory=list)
    total_fees: Optional[float] = None


class ExchangeRequest(BaseModel):
    exchange_legs: List[Any] = Field(min_length=1)
    total_fees: Optional[float] = None


class TicketRetrieveRequest(BaseModel):
    airline_pnr: str
    last_name: str


class PaymentInitiateRequest(BaseModel):
    booking_id: str
    return_url: Optional[str] = None


class PaymentInitiateResponse(BaseModel):
    booking_id: str
    url: str


class MonitorStatusSchema(BaseModel):
    running: bool
    interval_seconds: float
    batch_size: int
    sweeps: int
    last_sweep: Optional[Dict[str, Any]] = None

    @classmethod
    def from_domain(cls, obj: MonitorStatus) -> "MonitorStatusSchema":
        return cls(
            running=obj.running,
            interval_seconds=obj.interval_seconds,
            batch_size=obj.batch_size,
            sweeps=obj.sweeps,
            last_sweep=obj.last_sweep.as_dict() if obj.last_sweep else None,
        )
