import pytest
from conftest import raw_itinerary
from fastapi.testclient import TestClient

from flightdesk.core.errors import SupplierRejected, SupplierUnavailable
from flightdesk.services.payment_service import PaymentGateway
from main import create_app

CONTACT = {"full_name": "Lina Haddad", "email": "lina@example.com", "mobile": "+963944000000"}
PASSENGER = {"first_name": "Lina", "last_name": "Haddad", "gender": "F", "nationality": "Syria"}


@pytest.fixture
def api(settings, supplier):
    return TestClient(create_app(settings, client=supplier))


def add_to_cart(api):
    resp = api.post("/cart", json={"itinerary": raw_itinerary(), "search_id": "S-1", "contact": CONTACT})
    assert resp.status_code == 201
    return resp.json()


def test_health_reports_monitor(api):
    resp = api.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["monitor"]["running"] is False


def test_search_returns_sections(api, supplier):
    supplier.polls["S-1"].append({"complete": 100, "result": [raw_itinerary("T1")]})

    resp = api.post(
        "/flights/search",
        json={"segments": [{"origin": "DAM", "destination": "DXB", "date": "2025-03-01"}]},
    )

    assert resp.status_code == 200
    section = resp.json()["sections"][0]
    assert section["state"] == "complete"
    assert section["itineraries"][0]["itinerary_id"] == "T1"
    assert section["itineraries"][0]["carrier_name"] == "Emirates"
    assert resp.json()["any_polling"] is False


def test_invalid_search_is_a_bad_request(api, supplier):
    resp = api.post(
        "/flights/search",
        json={"segments": [{"origin": "DAM", "destination": "DXB", "date": "2025-03-01"}], "infants": 2},
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"
    assert supplier.calls == []


def test_checkout_flow_issues_ticket(api, settings):
    booking = add_to_cart(api)
    booking_id = booking["booking_id"]
    assert booking["supplier_status"] == "initiated"

    saved = api.post(f"/bookings/{booking_id}/passengers", json={"passengers": [PASSENGER]}).json()
    assert saved["supplier_order_id"] == "ORD-1"

    checkout = api.post("/payment/initiate", json={"booking_id": booking_id}).json()
    assert "vc=" in checkout["url"]

    token = PaymentGateway(settings).callback_token("TN-1", "500", booking_id)
    resp = api.post(
        "/payment/callback",
        data={"orderRef": booking_id, "transactionNo": "TN-1", "amount": "500", "token": token, "isSuccess": "true"},
    )

    assert resp.status_code == 200
    assert resp.json()["ticket_issued"] is True
    assert resp.json()["pnr"] == "ABC123"
    status = api.get(f"/bookings/{booking_id}/status").json()
    assert status["supplier_status"] == "issued"
    assert status["ticket_number"] == "176-1234567890"


def test_forged_payment_callback_is_rejected(api):
    booking_id = add_to_cart(api)["booking_id"]

    resp = api.post(
        "/payment/callback",
        json={"orderRef": booking_id, "transactionNo": "TN-1", "amount": "500", "token": "FORGED"},
    )

    assert resp.status_code == 400
    assert api.get(f"/bookings/{booking_id}").json()["payment_status"] == "pending"


def test_webhook_always_acknowledges(api):
    assert api.post("/webhooks/supplier", content=b"not json").json()["accepted"] is False

    resp = api.post("/webhooks/supplier", json={"event": "order.confirmed", "order_id": "ORD-404"})

    assert resp.status_code == 200
    assert resp.json()["received"] is True


def test_webhook_drives_booking(api):
    booking_id = add_to_cart(api)["booking_id"]
    api.post(f"/bookings/{booking_id}/passengers", json={"passengers": [PASSENGER]})

    resp = api.post(
        "/webhooks/supplier",
        json={"event": "ticket.issued", "order_id": "ORD-1", "ticket_number": "555", "pnr": "P1"},
    )

    assert resp.json()["supplier_status"] == "issued"
    assert api.get(f"/bookings/{booking_id}").json()["ticket"]["record_locator"] == "P1"


def test_error_mapping(api, supplier):
    assert api.get("/bookings/FB-9999").status_code == 404

    booking_id = add_to_cart(api)["booking_id"]
    assert api.post(f"/bookings/{booking_id}/issue").status_code == 409

    supplier.save_responses.append(SupplierRejected("SOLD_OUT", "no seats left"))
    resp = api.post(f"/bookings/{booking_id}/passengers", json={"passengers": [PASSENGER]})
    assert resp.status_code == 422
    assert resp.json()["code"] == "SOLD_OUT"

    supplier.save_responses.append(SupplierUnavailable("down"))
    assert api.post(f"/bookings/{booking_id}/passengers", json={"passengers": [PASSENGER]}).status_code == 503


def test_cart_rejects_itinerary_without_identity(api):
    raw = raw_itinerary()
    del raw["trip_id"]

    resp = api.post("/cart", json={"itinerary": raw, "contact": CONTACT})

    assert resp.status_code == 400
