from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional

import pytest

from flightdesk.core.config import Settings
from flightdesk.models.domain import Contact, Passenger, PassengerCount, PassengerType
from flightdesk.services.booking_machine import BookingStateMachine
from flightdesk.services.notifications import LoggingNotifier, NotificationDispatcher
from flightdesk.storage.repository import InMemoryRepository
from flightdesk.supplier.normalizer import FarePolicy, normalize_itinerary


def raw_itinerary(trip_id: str = "T1", price: float = 500.0, tax: float = 0.0, **extra: Any) -> Dict[str, Any]:
    item = {
        "trip_id": trip_id,
        "search_id": "S-1",
        "price": price,
        "tax": tax,
        "currency": "USD",
        "fare_key": f"FK-{trip_id}",
        "fare_brand": "LIGHT",
        "legs": [
            {
                "leg_id": "L1",
                "duration": 0,
                "cabin": "e",
                "stops": [],
                "bags": {"ADT": {"checked": {"desc": "2pc"}}},
                "segments": [
                    {
                        "iata": "EK",
                        "flightnumber": "912",
                        "from": {"airport": "DAM", "date": "2025-03-01 10:00"},
                        "to": {"airport": "DXB", "date": "2025-03-01 13:30"},
                        "duration": 0,
                        "cabin": "e",
                    }
                ],
            }
        ],
        "search_query": {"adt": 1, "chd": 0, "inf": 0, "options": {"cabin": "e"}},
    }
    item.update(extra)
    return item


class FakeSupplier:
    """Scripted stand-in for SupplierClient. Queued exceptions are raised."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.search_ids: Deque[Any] = deque()
        self.polls: Dict[str, Deque[Any]] = defaultdict(deque)
        self.fare_responses: Deque[Any] = deque()
        self.save_responses: Deque[Any] = deque()
        self.issue_responses: Deque[Any] = deque()
        self.order_details: Deque[Any] = deque()
        self.cancel_responses: Deque[Any] = deque()
        self._next_order = 1

    def _pop(self, queue: Deque[Any], default: Any) -> Any:
        item = queue.popleft() if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    def initiate_search(self, request) -> str:
        self.calls.append(("initiate_search", request.segments[0].origin))
        return self._pop(self.search_ids, "S-1")

    def poll_results(self, search_id: str, after: Optional[int] = None) -> Dict[str, Any]:
        self.calls.append(("poll_results", search_id, after))
        return self._pop(self.polls[search_id], {"complete": 100, "result": []})

    def check_fare(self, booking: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("check_fare", booking.get("fare_key")))
        return self._pop(self.fare_responses, {"status": "success"})

    def save_order(self, booking, passengers, contact) -> str:
        self.calls.append(("save_order", booking.get("fare_key"), len(passengers)))
        default = f"ORD-{self._next_order}"
        order_id = self._pop(self.save_responses, default)
        if order_id == default:
            self._next_order += 1
        return order_id

    def issue_order(self, order_id: str) -> Dict[str, Any]:
        self.calls.append(("issue_order", order_id))
        return self._pop(
            self.issue_responses,
            {"status": "success", "ticket_number": "176-1234567890", "pnr": "ABC123",
             "ticket_url": "https://tickets.example/176-1234567890.pdf"},
        )

    def get_order_details(self, order_id: str) -> Dict[str, Any]:
        self.calls.append(("get_order_details", order_id))
        return self._pop(self.order_details, {"status": "success", "data": {"status": "new"}})

    def cancel_order(self, order_id: str) -> Dict[str, Any]:
        self.calls.append(("cancel_order", order_id))
        return self._pop(self.cancel_responses, {"status": "success"})

    def get_ticket_details(self, ticket_id: str) -> Dict[str, Any]:
        self.calls.append(("get_ticket_details", ticket_id))
        return {"status": "success", "ticket_id": ticket_id}

    def retrieve_ticket(self, airline_pnr: str, last_name: str) -> Dict[str, Any]:
        self.calls.append(("retrieve_ticket", airline_pnr, last_name))
        return {"status": "success", "pnr": airline_pnr}

    def refund_ticket(self, ticket_id, legs=None, total_fees=None, passengers=None):
        self.calls.append(("refund_ticket", ticket_id))
        return {"status": "success"}

    def void_ticket(self, ticket_id, passengers=None):
        self.calls.append(("void_ticket", ticket_id))
        return {"status": "success"}

    def exchange_ticket(self, ticket_id, exchange_legs, total_fees=None, passengers=None):
        self.calls.append(("exchange_ticket", ticket_id))
        return {"status": "success"}

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supplier_api_key="test-key",
        supplier_base_url="https://supplier.test/v1/flights",
        monitor_enabled=False,
        poll_interval_seconds=0,
        terminal_key="TK",
        merchant_key="MID",
        merchant_secret="SECRET",
        server_public_url="https://api.test",
        monitor_max_issue_attempts=3,
    )


@pytest.fixture
def supplier() -> FakeSupplier:
    return FakeSupplier()


@pytest.fixture
def repository(settings) -> InMemoryRepository:
    return InMemoryRepository(id_prefix=settings.booking_id_prefix, id_start=settings.booking_id_start)


@pytest.fixture
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


@pytest.fixture
def machine(repository, supplier, settings, notifier) -> BookingStateMachine:
    return BookingStateMachine(
        repository=repository,
        client=supplier,
        settings=settings,
        notifications=NotificationDispatcher(notifier),
    )


@pytest.fixture
def itinerary(settings):
    return normalize_itinerary(raw_itinerary(), FarePolicy.from_settings(settings), passengers=PassengerCount())


@pytest.fixture
def contact() -> Contact:
    return Contact(full_name="Lina Haddad", email="lina@example.com", mobile="+963944000000")


@pytest.fixture
def passengers() -> List[Passenger]:
    return [
        Passenger(
            first_name="Lina",
            last_name="Haddad",
            gender="F",
            birth_date=None,
            type=PassengerType.adult,
            document_number="N1234567",
            document_country="Syria",
            nationality="Syria",
        )
    ]
