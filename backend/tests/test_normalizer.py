import json
from datetime import datetime, timezone

from conftest import raw_itinerary

from flightdesk.models.domain import PassengerCount
from flightdesk.supplier.carriers import carrier_name
from flightdesk.supplier.normalizer import (
    FarePolicy,
    duration_minutes,
    format_baggage_allowance,
    format_duration,
    normalize_completion,
    normalize_itinerary,
    normalize_poll_response,
    parse_timestamp,
    round_money,
)

POLICY = FarePolicy(child_ratio=0.75, infant_ratio=0.10)


def test_price_reconciliation_reproduces_supplier_total():
    pax = PassengerCount(adults=2, children=1, infants=1)
    itinerary = normalize_itinerary(raw_itinerary(price=1000), POLICY, passengers=pax)

    fares = itinerary.price_breakdowns
    total = fares["ADT"].total * 2 + fares["CHD"].total + fares["INF"].total
    assert abs(total - 1000) <= 0.05
    assert fares["ADT"].total == 350.88
    assert fares["CHD"].total == 263.16
    assert fares["INF"].total == 35.09
    assert itinerary.price_per_pax == 250.0
    assert abs(itinerary.total_price - 1000) <= 0.05


def test_price_reconciliation_splits_tax_the_same_way():
    pax = PassengerCount(adults=2, children=1, infants=1)
    itinerary = normalize_itinerary(raw_itinerary(price=900, tax=100), POLICY, passengers=pax)

    fares = itinerary.price_breakdowns
    assert abs(fares["ADT"].tax * 2 + fares["CHD"].tax + fares["INF"].tax - 100) <= 0.05
    assert abs(itinerary.total_price - 1000) <= 0.05


def test_explicit_adult_breakdown_drives_missing_child_fare():
    raw = raw_itinerary(price=787.5, price_breakdowns={"ADT": {"price": 400, "tax": 50}})
    itinerary = normalize_itinerary(raw, POLICY, passengers=PassengerCount(adults=1, children=1))

    fares = itinerary.price_breakdowns
    assert fares["ADT"].total == 450.0
    assert fares["CHD"].price == 300.0
    assert fares["CHD"].tax == 37.5
    assert fares["CHD"].total == 337.5


def test_passenger_counts_fall_back_to_search_query():
    raw = raw_itinerary(price=300, search_query={"adt": 3, "chd": "0", "inf": None})
    itinerary = normalize_itinerary(raw, POLICY)

    assert itinerary.passengers.adults == 3
    assert itinerary.price_breakdowns["ADT"].total == 100.0


def test_durations_recomputed_from_timestamps_when_zero():
    itinerary = normalize_itinerary(raw_itinerary(), POLICY)

    leg = itinerary.legs[0]
    assert leg.duration_minutes == 210
    assert leg.segments[0].duration_minutes == 210
    assert format_duration(leg.duration_minutes) == "3h 30m"


def test_display_fields():
    itinerary = normalize_itinerary(raw_itinerary(), POLICY)

    assert itinerary.carrier_code == "EK"
    assert itinerary.carrier_name == "Emirates"
    assert itinerary.cabin_name == "Economy"
    assert itinerary.baggage_allowance == "2 pieces (23kg each)"
    assert itinerary.refundable_info == "Non-Refundable"
    assert itinerary.fare_brand == "LIGHT"
    assert itinerary.legs[0].stops_count == 0


def test_nested_fields_encoded_as_json_strings_are_parsed():
    raw = raw_itinerary()
    raw["legs"] = json.dumps(raw["legs"])
    raw["search_query"] = json.dumps(raw["search_query"])

    itinerary = normalize_itinerary(raw, POLICY)

    assert len(itinerary.legs) == 1
    assert itinerary.legs[0].segments[0].flight_number == "912"


def test_item_without_identity_is_rejected():
    raw = raw_itinerary()
    del raw["trip_id"]
    assert normalize_itinerary(raw, POLICY) is None


def test_unknown_carrier_passes_through():
    assert carrier_name("ZZ") == "ZZ"
    assert carrier_name("tk") == "Turkish Airlines"


def test_round_money_is_half_up_on_cents():
    assert round_money(2.675) == 2.68
    assert round_money(0.125) == 0.13
    assert round_money("12.344") == 12.34
    assert round_money(None) == 0.0
    assert round_money("n/a") == 0.0


def test_baggage_descriptions():
    assert format_baggage_allowance("1PC") == "1 piece (23kg)"
    assert format_baggage_allowance("30KG") == "30kg"
    assert format_baggage_allowance("2x23kg") == "2 x 23kg"
    assert format_baggage_allowance("") == "No baggage included"
    assert format_baggage_allowance("0") == "No baggage included"


def test_timestamp_formats():
    assert parse_timestamp("2025-03-01 10:00") == datetime(2025, 3, 1, 10, 0)
    assert parse_timestamp("202503011000") == datetime(2025, 3, 1, 10, 0)
    assert parse_timestamp("2025-03-01T10:00:00Z") == datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_timestamp("not a date") is None
    # offset-aware against naive cannot be compared
    assert duration_minutes("2025-03-01T10:00:00Z", "2025-03-01 12:00") == 0
    assert duration_minutes("2025-03-01 12:00", "2025-03-01 10:00") == 0


def test_completion_accepts_numbers_and_booleans():
    assert normalize_completion(True) == 100.0
    assert normalize_completion(False) == 0.0
    assert normalize_completion(45) == 45.0
    assert normalize_completion("70") == 70.0
    assert normalize_completion(130) == 100.0
    assert normalize_completion(None) == 0.0


def test_poll_response_dedupes_and_drops_items_without_identity():
    payload = {
        "complete": True,
        "last_result": 7,
        "result": [
            raw_itinerary("T1", price=100),
            raw_itinerary("T2", price=200),
            {"price": 50},
            raw_itinerary("T1", price=150),
        ],
    }

    batch = normalize_poll_response(payload, POLICY, search_id="S-9")

    assert batch.complete == 100.0
    assert batch.cursor == 7
    assert [i.itinerary_id for i in batch.itineraries] == ["T1", "T2"]
    assert batch.itineraries[0].price == 150.0
    assert all(i.search_id == "S-9" for i in batch.itineraries)


def test_poll_response_ignores_non_numeric_cursor():
    batch = normalize_poll_response({"complete": 20, "last_result": "x", "result": None}, POLICY)
    assert batch.cursor is None
    assert batch.itineraries == []
