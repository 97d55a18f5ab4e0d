import json
from datetime import date
from unittest.mock import MagicMock

import pytest
import requests

from flightdesk.core.errors import (
    NetworkUnreachable,
    NotFoundError,
    SupplierRejected,
    SupplierTimeout,
    SupplierUnavailable,
)
from flightdesk.models.domain import PassengerCount, SearchRequest, SearchSegment
from flightdesk.supplier.client import SupplierClient, parse_order_status, parse_ticket


def make_response(status=200, body=None, reason="OK"):
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason
    resp._content = json.dumps(body).encode("utf-8") if body is not None else b""
    return resp


@pytest.fixture
def session():
    mock = MagicMock()
    mock.headers = {}
    return mock


@pytest.fixture
def client(settings, session):
    return SupplierClient(settings, session=session)


def test_search_encodes_trips_and_passengers_in_path(client, session, settings):
    session.request.return_value = make_response(body={"search_id": "S-42"})
    request = SearchRequest(
        segments=[
            SearchSegment("dam", "DXB", date(2025, 3, 1)),
            SearchSegment("DXB", "DAM", date(2025, 3, 8)),
        ],
        passengers=PassengerCount(adults=2, children=1, infants=0),
    )

    assert client.initiate_search(request) == "S-42"

    method, url = session.request.call_args.args
    assert method == "GET"
    assert url == settings.supplier_base_url + "/search/DAM-DXB-20250301:DXB-DAM-20250308/2/1/0"
    assert session.request.call_args.kwargs["params"] == {"cabin": "e", "direct": "false"}
    assert session.headers["Authorization"] == "Bearer test-key"


def test_search_without_id_is_a_rejection(client, session):
    session.request.return_value = make_response(body={"status": "success"})
    request = SearchRequest(segments=[SearchSegment("DAM", "DXB", date(2025, 3, 1))])

    with pytest.raises(SupplierRejected) as info:
        client.initiate_search(request)
    assert info.value.code == "no_search_id"


def test_poll_passes_cursor(client, session):
    session.request.return_value = make_response(body={"complete": 40, "result": []})

    client.poll_results("S-1", after=12)

    assert session.request.call_args.args[1].endswith("/result/S-1")
    assert session.request.call_args.kwargs["params"] == {"after": 12}


@pytest.mark.parametrize(
    "side_effect, expected",
    [
        (requests.Timeout("read timed out"), SupplierTimeout),
        (requests.ConnectionError("refused"), NetworkUnreachable),
    ],
)
def test_transport_failures_are_typed(client, session, side_effect, expected):
    session.request.side_effect = side_effect
    with pytest.raises(expected):
        client.get_order_details("ORD-1")


@pytest.mark.parametrize(
    "response, expected",
    [
        (make_response(404, {"message": "order not found"}, "Not Found"), NotFoundError),
        (make_response(502, None, "Bad Gateway"), SupplierUnavailable),
        (make_response(400, {"code": "FARE_EXPIRED", "message": "fare expired"}, "Bad Request"), SupplierRejected),
        (make_response(200, {"status": "error", "message": "duplicate"}), SupplierRejected),
    ],
)
def test_http_failures_are_typed(client, session, response, expected):
    session.request.return_value = response
    with pytest.raises(expected):
        client.cancel_order("ORD-1")


def test_rejection_keeps_supplier_code(client, session):
    session.request.return_value = make_response(400, {"code": "FARE_EXPIRED", "message": "fare expired"})

    with pytest.raises(SupplierRejected) as info:
        client.check_fare({"fare_key": "FK"})
    assert info.value.code == "FARE_EXPIRED"
    assert info.value.message == "fare expired"


def test_save_reads_order_id_from_envelope(client, session):
    session.request.return_value = make_response(body={"status": "success", "data": {"order_id": 991}})

    assert client.save_order({"fare_key": "FK"}, [], {}) == "991"
    assert session.request.call_args.kwargs["json"] == {"booking": {"fare_key": "FK"}, "passengers": [], "contact": {}}


def test_issue_uses_its_own_timeout(client, session, settings):
    session.request.return_value = make_response(body={"status": "success", "ticket_number": "1"})

    client.issue_order("ORD-1")

    assert session.request.call_args.kwargs["timeout"] == settings.issue_timeout_seconds
    assert session.request.call_args.kwargs["json"] == {"order_id": "ORD-1"}


def test_parse_ticket_variants():
    flat = parse_ticket({"ticket_number": "176", "pnr": "ABC", "ticket_url": "https://t/1.pdf"})
    nested = parse_ticket({"data": {"tickets": [{"etkt": "999", "airline_pnr": "XYZ", "id": "T-1"}]}})

    assert (flat.ticket_number, flat.record_locator, flat.document_path) == ("176", "ABC", "https://t/1.pdf")
    assert (nested.ticket_number, nested.record_locator, nested.ticket_id) == ("999", "XYZ", "T-1")
    assert parse_ticket({"status": "success"}) is None


def test_parse_order_status():
    assert parse_order_status({"order": {"order_status": "ISSUED"}}) == "issued"
    assert parse_order_status({"data": {"status": "New"}}) == "new"
    assert parse_order_status({}) == ""
