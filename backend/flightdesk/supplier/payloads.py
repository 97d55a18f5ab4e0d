from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from flightdesk.core.errors import ValidationError
from flightdesk.models.domain import (
    Booking,
    Contact,
    Itinerary,
    Passenger,
    PassengerCount,
    PassengerType,
    SearchRequest,
)
from flightdesk.supplier.carriers import country_code

PAX_TYPE_CODES = {
    PassengerType.adult: "ADT",
    PassengerType.child: "CHD",
    PassengerType.infant: "INF",
}

_LEG_FIELDS = ("leg_id", "duration", "bags", "from", "to", "cabin", "seats", "iata",
               "stops", "stop_over", "cabin_name")
_SEGMENT_FIELDS = ("cabin", "cabin_name", "farebase", "seats", "class", "from", "to",
                   "equipment", "equipment_name", "flightnumber", "iata", "airline_name",
                   "duration")


def encode_trips(request: SearchRequest) -> str:
    """``ORG-DST-YYYYMMDD`` per segment, joined by ``:``."""
    return ":".join(
        f"{s.origin.upper()}-{s.destination.upper()}-{s.date.strftime('%Y%m%d')}"
        for s in request.segments
    )


def _format_date(value: Optional[date]) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _clean_legs(legs: Any) -> List[Dict[str, Any]]:
    if not isinstance(legs, list):
        return []
    cleaned = []
    for leg in legs:
        if not isinstance(leg, dict):
            continue
        item = {key: leg.get(key) for key in _LEG_FIELDS if key in leg}
        item["segments"] = [
            {key: seg.get(key) for key in _SEGMENT_FIELDS if key in seg}
            for seg in leg.get("segments") or []
            if isinstance(seg, dict)
        ]
        cleaned.append(item)
    return cleaned


def _search_query(itinerary: Itinerary, direct: bool = False) -> Dict[str, Any]:
    query = itinerary.raw.get("search_query")
    if isinstance(query, dict) and query:
        return query
    pax = itinerary.passengers
    trips = []
    for leg in itinerary.legs:
        if not leg.segments:
            continue
        first, last = leg.segments[0], leg.segments[-1]
        trips.append(
            {
                "from": first.origin,
                "to": last.destination,
                "date": first.departure.date().isoformat() if first.departure else "",
            }
        )
    return {
        "trips": trips,
        "adt": pax.adults,
        "chd": pax.children,
        "inf": pax.infants,
        "options": {"direct": direct, "cabin": itinerary.legs[0].cabin if itinerary.legs else "e"},
    }


def booking_payload(booking: Booking, source: str) -> Dict[str, Any]:
    """Supplier ``booking`` body built from the booking's flight snapshot."""
    itinerary = booking.flight.itinerary
    raw = booking.flight.raw or itinerary.raw
    first_leg = itinerary.legs[0] if itinerary.legs else None
    departure = first_leg.segments[0].departure if first_leg and first_leg.segments else None
    return {
        "price": itinerary.price,
        "tax": itinerary.tax,
        "refundable_info": itinerary.refundable_info,
        "fare_key": booking.fare_key,
        "fare_brand": booking.flight.fare_brand or "ECONOMY",
        "price_breakdowns": raw.get("price_breakdowns") or {},
        "legs": _clean_legs(raw.get("legs")),
        "trip_id": itinerary.itinerary_id,
        "search_id": itinerary.search_id or raw.get("search_id") or "",
        "src": raw.get("src") or source,
        "id": raw.get("id") or booking.booking_id,
        "total_pax_no_inf": itinerary.passengers.total_without_infants,
        "search_query": _search_query(itinerary),
        "currency": itinerary.currency,
        "can_hold": itinerary.can_hold,
        "can_void": itinerary.can_void,
        "can_refund": itinerary.can_refund,
        "can_exchange": itinerary.can_exchange,
        "etd": departure.isoformat() if departure else "",
    }


def passenger_payloads(
    passengers: List[Passenger], expected: Optional[PassengerCount] = None
) -> List[Dict[str, Any]]:
    if not passengers:
        raise ValidationError("At least one passenger is required")
    if expected is not None and len(passengers) != expected.total:
        raise ValidationError(
            f"Expected {expected.total} passengers, got {len(passengers)}"
        )
    if not any(p.type == PassengerType.adult for p in passengers):
        raise ValidationError("At least one adult passenger is required")

    records = []
    for index, pax in enumerate(passengers, start=1):
        if not pax.first_name.strip() or not pax.last_name.strip():
            raise ValidationError(f"Passenger {index} is missing a first or last name")
        document_country = country_code(pax.document_country or pax.nationality)
        nationality = country_code(pax.nationality or pax.document_country)
        if document_country is None or nationality is None:
            raise ValidationError(f"Passenger {index} has an unknown country")
        records.append(
            {
                "pax_id": f"PAX{index}",
                "type": PAX_TYPE_CODES[pax.type],
                "first_name": pax.first_name.strip(),
                "last_name": pax.last_name.strip(),
                "gender": "F" if pax.gender.upper().startswith("F") else "M",
                "birth_date": _format_date(pax.birth_date),
                "document_type": pax.document_type or "PP",
                "document_number": pax.document_number,
                "document_expiry": _format_date(pax.document_expiry),
                "document_country": document_country,
                "nationality": nationality,
            }
        )
    return records


def contact_payload(contact: Contact) -> Dict[str, str]:
    if not contact.email or not contact.mobile:
        raise ValidationError("Contact email and mobile are required")
    return {
        "full_name": contact.full_name or "Guest",
        "email": contact.email,
        "mobile": contact.mobile,
    }
