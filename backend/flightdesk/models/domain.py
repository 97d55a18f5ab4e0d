from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SupplierStatus(str, Enum):
    pending = "pending"
    initiated = "initiated"
    saved = "saved"
    new = "new"
    confirmed = "confirmed"
    issued = "issued"
    saved_not_issued = "saved_not_issued"
    failed = "failed"
    cancelled = "cancelled"
    expired = "expired"


TERMINAL_SUPPLIER_STATUSES = frozenset(
    {
        SupplierStatus.issued,
        SupplierStatus.failed,
        SupplierStatus.cancelled,
        SupplierStatus.expired,
    }
)

# Non-terminal ordering; an event may only move a booking forward along it.
SUPPLIER_STATUS_RANK: Dict[SupplierStatus, int] = {
    SupplierStatus.pending: 0,
    SupplierStatus.initiated: 1,
    SupplierStatus.saved: 2,
    SupplierStatus.new: 2,
    SupplierStatus.confirmed: 3,
    SupplierStatus.saved_not_issued: 3,
}

ISSUABLE_SUPPLIER_STATUSES = frozenset(
    {
        SupplierStatus.saved,
        SupplierStatus.new,
        SupplierStatus.confirmed,
        SupplierStatus.saved_not_issued,
    }
)


class BookingStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    issued = "issued"
    done = "done"


BOOKING_STATUS_RANK: Dict[BookingStatus, int] = {
    BookingStatus.pending: 0,
    BookingStatus.confirmed: 1,
    BookingStatus.issued: 2,
    BookingStatus.done: 2,
}


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class TicketStatus(str, Enum):
    pending = "pending"
    issued = "issued"
    refunded = "refunded"
    voided = "voided"
    exchanged = "exchanged"


class PassengerType(str, Enum):
    adult = "adult"
    child = "child"
    infant = "infant"


class SearchState(str, Enum):
    created = "created"
    polling = "polling"
    complete = "complete"
    definitively_empty = "definitively_empty"
    stalled = "stalled"
    timed_out = "timed_out"
    failed = "failed"


@dataclass
class PassengerCount:
    adults: int = 1
    children: int = 0
    infants: int = 0

    @property
    def total(self) -> int:
        return self.adults + self.children + self.infants

    @property
    def total_without_infants(self) -> int:
        return self.adults + self.children


@dataclass
class SearchSegment:
    origin: str
    destination: str
    date: date


@dataclass
class SearchRequest:
    segments: List[SearchSegment]
    passengers: PassengerCount = field(default_factory=PassengerCount)
    cabin: str = "e"
    direct: bool = False


@dataclass
class FlightSegment:
    carrier_code: str
    carrier_name: str
    flight_number: str
    origin: str
    destination: str
    departure: Optional[datetime]
    arrival: Optional[datetime]
    duration_minutes: int
    cabin: str
    cabin_name: str


@dataclass
class Leg:
    leg_id: str
    segments: List[FlightSegment]
    cabin: str
    cabin_name: str
    duration_minutes: int
    stops: List[str] = field(default_factory=list)

    @property
    def stops_count(self) -> int:
        return len(self.stops)


@dataclass
class PassengerFare:
    label: str
    price: float
    tax: float
    total: float


@dataclass
class Itinerary:
    itinerary_id: str
    search_id: str
    legs: List[Leg]
    price: float
    tax: float
    currency: str
    price_breakdowns: Dict[str, PassengerFare]
    total_price: float
    price_per_pax: float
    passengers: PassengerCount
    fare_key: str
    fare_brand: str
    refundable_info: str
    can_hold: bool = False
    can_void: bool = False
    can_refund: bool = False
    can_exchange: bool = False
    baggage_allowance: str = "No baggage included"
    cabin_name: str = "Economy"
    carrier_code: str = ""
    carrier_name: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PollBatch:
    """One normalized result-poll response."""

    complete: float
    cursor: Optional[int]
    itineraries: List[Itinerary]


@dataclass
class Passenger:
    first_name: str
    last_name: str
    gender: str
    birth_date: Optional[date]
    type: PassengerType = PassengerType.adult
    document_type: str = "PP"
    document_number: str = ""
    document_issue_date: Optional[date] = None
    document_expiry: Optional[date] = None
    document_country: str = ""
    nationality: str = ""
    email: str = ""
    phone: str = ""


@dataclass
class Contact:
    full_name: str
    email: str
    mobile: str


@dataclass
class FlightSnapshot:
    itinerary: Itinerary
    fare_key: str
    fare_brand: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TicketDetails:
    ticket_number: str
    record_locator: str
    document_path: str = ""
    ticket_id: str = ""


@dataclass
class PaymentTransaction:
    date: datetime
    amount: float
    type: str
    reference: str


@dataclass
class PaymentDetails:
    status: PaymentStatus = PaymentStatus.pending
    amount: float = 0.0
    currency: str = ""
    reference: str = ""
    transactions: List[PaymentTransaction] = field(default_factory=list)


@dataclass
class Booking:
    booking_id: str
    owner_id: str
    contact: Contact
    flight: FlightSnapshot
    created_at: datetime
    passengers: List[Passenger] = field(default_factory=list)
    status: BookingStatus = BookingStatus.pending
    supplier_status: SupplierStatus = SupplierStatus.pending
    supplier_order_id: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.pending
    payment: PaymentDetails = field(default_factory=PaymentDetails)
    ticket: Optional[TicketDetails] = None
    ticket_status: TicketStatus = TicketStatus.pending
    error: Optional[str] = None
    issue_attempts: int = 0
    timestamps: Dict[str, datetime] = field(default_factory=dict)
    version: int = 0

    @property
    def fare_key(self) -> str:
        return self.flight.fare_key
