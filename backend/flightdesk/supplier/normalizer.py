"""
Supplier payload -> canonical itinerary shapes.

This is the only place that interprets raw supplier JSON for search results.
Nested fields may arrive as objects, arrays or JSON-encoded strings depending on
the endpoint; they are coerced here once and internal code only ever sees the
dataclasses from ``flightdesk.models.domain``.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from flightdesk.models.domain import (
    FlightSegment,
    Itinerary,
    Leg,
    PassengerCount,
    PassengerFare,
    PollBatch,
)
from flightdesk.supplier.carriers import cabin_name, carrier_name

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M",
    "%Y%m%d%H%M",
    "%Y%m%d",
    "%d/%m/%Y %H:%M",
    "%d.%m.%Y %H:%M",
)

PAX_LABELS = {"ADT": "Adult", "CHD": "Child", "INF": "Infant"}


@dataclass(frozen=True)
class FarePolicy:
    """
    Ratios used to split a per-booking supplier total into per-passenger
    fares when the supplier sends no breakdown. Display policy only.
    """

    child_ratio: float = 0.75
    infant_ratio: float = 0.10

    @classmethod
    def from_settings(cls, settings) -> "FarePolicy":
        return cls(
            child_ratio=settings.child_fare_ratio,
            infant_ratio=settings.infant_fare_ratio,
        )


def round_money(value: Any) -> float:
    """Round to cents, half-up. Unparseable values become 0.0."""
    try:
        amount = Decimal(str(value if value is not None else 0))
    except InvalidOperation:
        return 0.0
    if not amount.is_finite():
        return 0.0
    return float(amount.quantize(_CENT, rounding=ROUND_HALF_UP))


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # epoch seconds, or milliseconds when implausibly large
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if not text.isdigit():
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    logger.debug("Unrecognised timestamp format: %r", value)
    return None


def duration_minutes(start: Any, end: Any) -> int:
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if not start_dt or not end_dt:
        return 0
    try:
        delta = end_dt - start_dt
    except TypeError:
        # one side carries an offset and the other does not
        return 0
    minutes = round(delta.total_seconds() / 60)
    return minutes if minutes > 0 else 0


def format_duration(total_minutes: int) -> str:
    if not total_minutes:
        return "0h 0m"
    hours, minutes = divmod(int(total_minutes), 60)
    return f"{hours}h {minutes}m"


def format_baggage_allowance(desc: Any) -> str:
    if not desc or str(desc).strip() in ("0", "0 kg"):
        return "No baggage included"
    text = str(desc).lower()

    if "pc" in text or "piece" in text:
        match = re.search(r"(\d+)\s*(pc|piece)", text)
        count = int(match.group(1)) if match else 1
        return "1 piece (23kg)" if count == 1 else f"{count} pieces (23kg each)"

    match = re.search(r"(\d+)\s*x\s*(\d+)\s*kg", text)
    if match:
        return f"{match.group(1)} x {match.group(2)}kg"

    match = re.search(r"(\d+)\*?\s*kg", text)
    if match:
        return f"{match.group(1)}kg"

    return str(desc).replace("*", "").strip() or "Standard baggage"


def normalize_completion(value: Any) -> float:
    """``complete`` arrives as a percentage or as a boolean."""
    if isinstance(value, bool):
        return 100.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(min(max(value, 0), 100))
    try:
        return float(min(max(float(value), 0), 100))
    except (TypeError, ValueError):
        return 0.0


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    if isinstance(value, str) and value.strip().startswith(("[", "{")):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return _as_list(parsed)
    return []


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _place(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("airport") or value.get("iata") or value.get("code") or "")
    return str(value or "")


def _place_date(value: Any) -> Any:
    return value.get("date") if isinstance(value, dict) else None


def passenger_count_from_query(search_query: Dict[str, Any]) -> PassengerCount:
    return PassengerCount(
        adults=_as_int(search_query.get("adt"), 1) or 1,
        children=_as_int(search_query.get("chd")),
        infants=_as_int(search_query.get("inf")),
    )


def reconcile_price_breakdowns(
    price: float,
    tax: float,
    passengers: PassengerCount,
    policy: FarePolicy,
    explicit: Optional[Dict[str, Any]] = None,
) -> Dict[str, PassengerFare]:
    """
    Split per-booking ``price``/``tax`` into ADT/CHD/INF fares so that
    ``adults*ADT + children*CHD + infants*INF`` reproduces the supplier total.
    Explicit supplier breakdowns win field by field.
    """
    weight = (
        passengers.adults
        + passengers.children * policy.child_ratio
        + passengers.infants * policy.infant_ratio
    )
    adult_price = price / weight if weight > 0 else price
    adult_tax = tax / weight if weight > 0 else tax
    explicit = explicit or {}

    computed = {
        "ADT": (adult_price, adult_tax),
        "CHD": (adult_price * policy.child_ratio, adult_tax * policy.child_ratio),
        "INF": (adult_price * policy.infant_ratio, adult_tax * policy.infant_ratio),
    }

    given_adult = _as_dict(explicit.get("ADT"))
    if given_adult.get("price") is not None:
        base_price = float(given_adult["price"])
        base_tax = float(given_adult.get("tax") or 0)
        computed["CHD"] = (base_price * policy.child_ratio, base_tax * policy.child_ratio)
        computed["INF"] = (base_price * policy.infant_ratio, base_tax * policy.infant_ratio)

    fares: Dict[str, PassengerFare] = {}
    for pax_type, (fallback_price, fallback_tax) in computed.items():
        given = _as_dict(explicit.get(pax_type))
        fare_price = given.get("price") if given.get("price") is not None else fallback_price
        fare_tax = given.get("tax") if given.get("tax") is not None else fallback_tax
        fare_total = given.get("total")
        if fare_total is None:
            fare_total = float(fare_price) + float(fare_tax)
        fares[pax_type] = PassengerFare(
            label=given.get("label") or PAX_LABELS[pax_type],
            price=round_money(fare_price),
            tax=round_money(fare_tax),
            total=round_money(fare_total),
        )
    return fares


def _normalize_segment(raw: Dict[str, Any], leg_cabin: str) -> FlightSegment:
    origin = raw.get("from")
    destination = raw.get("to")
    duration = _as_int(raw.get("duration"))
    if duration <= 0:
        duration = duration_minutes(_place_date(origin), _place_date(destination))
    cabin = str(raw.get("cabin") or leg_cabin or "")
    code = str(raw.get("iata") or "")
    return FlightSegment(
        carrier_code=code,
        carrier_name=carrier_name(code),
        flight_number=str(raw.get("flightnumber") or raw.get("flight_number") or ""),
        origin=_place(origin),
        destination=_place(destination),
        departure=parse_timestamp(_place_date(origin)),
        arrival=parse_timestamp(_place_date(destination)),
        duration_minutes=duration,
        cabin=cabin,
        cabin_name=cabin_name(cabin),
    )


def _normalize_leg(raw: Dict[str, Any], default_cabin: str) -> Leg:
    cabin = str(raw.get("cabin") or default_cabin or "")
    raw_segments = [_as_dict(s) for s in _as_list(raw.get("segments"))]
    segments = [_normalize_segment(s, cabin) for s in raw_segments]
    duration = _as_int(raw.get("duration"))
    if duration <= 0 and raw_segments:
        duration = duration_minutes(
            _place_date(raw_segments[0].get("from")),
            _place_date(raw_segments[-1].get("to")),
        )
    return Leg(
        leg_id=str(raw.get("leg_id") or ""),
        segments=segments,
        cabin=cabin,
        cabin_name=cabin_name(cabin),
        duration_minutes=duration,
        stops=[_place(s) for s in _as_list(raw.get("stops"))],
    )


def normalize_itinerary(
    raw: Dict[str, Any],
    policy: FarePolicy,
    passengers: Optional[PassengerCount] = None,
    search_id: Optional[str] = None,
) -> Optional[Itinerary]:
    """Canonical itinerary, or None when the item carries no identity."""
    itinerary_id = raw.get("trip_id") or raw.get("id")
    if not itinerary_id:
        return None

    search_query = _as_dict(raw.get("search_query"))
    options = _as_dict(search_query.get("options"))
    pax = passengers or passenger_count_from_query(search_query)
    default_cabin = str(options.get("cabin") or "e")

    price = round_money(raw.get("price"))
    tax = round_money(raw.get("tax"))
    breakdowns = reconcile_price_breakdowns(
        price, tax, pax, policy, explicit=_as_dict(raw.get("price_breakdowns"))
    )
    total_price = round_money(
        pax.adults * breakdowns["ADT"].total
        + pax.children * breakdowns["CHD"].total
        + pax.infants * breakdowns["INF"].total
    )
    price_per_pax = round_money(price / pax.total) if pax.total else price

    raw_legs = [_as_dict(leg) for leg in _as_list(raw.get("legs"))]
    legs = [_normalize_leg(leg, default_cabin) for leg in raw_legs]

    baggage = None
    if raw_legs:
        bags = _as_dict(raw_legs[0].get("bags"))
        baggage = _as_dict(_as_dict(bags.get("ADT")).get("checked")).get("desc")

    first_segment = legs[0].segments[0] if legs and legs[0].segments else None

    return Itinerary(
        itinerary_id=str(itinerary_id),
        search_id=str(search_id or raw.get("search_id") or ""),
        legs=legs,
        price=price,
        tax=tax,
        currency=str(raw.get("currency") or "USD"),
        price_breakdowns=breakdowns,
        total_price=total_price,
        price_per_pax=price_per_pax,
        passengers=pax,
        fare_key=str(raw.get("fare_key") or ""),
        fare_brand=str(raw.get("fare_brand") or "ECONOMY"),
        refundable_info=str(raw.get("refundable_info") or "Non-Refundable"),
        can_hold=bool(raw.get("can_hold", False)),
        can_void=bool(raw.get("can_void", False)),
        can_refund=bool(raw.get("can_refund", False)),
        can_exchange=bool(raw.get("can_exchange", False)),
        baggage_allowance=format_baggage_allowance(baggage),
        cabin_name=cabin_name(default_cabin),
        carrier_code=first_segment.carrier_code if first_segment else "",
        carrier_name=first_segment.carrier_name if first_segment else "",
        raw=raw,
    )


def normalize_poll_response(
    payload: Dict[str, Any],
    policy: FarePolicy,
    passengers: Optional[PassengerCount] = None,
    search_id: Optional[str] = None,
) -> PollBatch:
    cursor = payload.get("last_result")
    by_id: Dict[str, Itinerary] = {}
    for item in _as_list(payload.get("result")):
        itinerary = normalize_itinerary(
            _as_dict(item), policy, passengers=passengers, search_id=search_id
        )
        if itinerary is None:
            logger.debug("Dropping search result without identity")
            continue
        by_id[itinerary.itinerary_id] = itinerary
    return PollBatch(
        complete=normalize_completion(payload.get("complete")),
        cursor=cursor if isinstance(cursor, int) and not isinstance(cursor, bool) else None,
        itineraries=list(by_id.values()),
    )
