from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from flightdesk.core.config import Settings
from flightdesk.core.errors import (
    NetworkUnreachable,
    NotFoundError,
    SupplierRejected,
    SupplierTimeout,
    SupplierUnavailable,
)
from flightdesk.models.domain import SearchRequest, TicketDetails
from flightdesk.supplier.payloads import encode_trips

logger = logging.getLogger(__name__)

COMMANDS = {
    "search": "/search/{trips}/{adt}/{chd}/{inf}",
    "result": "/result/{search_id}",
    "fare": "/booking/fare",
    "save": "/booking/save",
    "issue": "/order/issue",
    "order_details": "/order/details",
    "cancel": "/order/cancel",
    "ticket_details": "/ticket/details",
    "ticket_retrieve": "/ticket/retrieve",
    "refund": "/ticket/refund",
    "void": "/ticket/void",
    "exchange": "/ticket/exchange",
}


def _envelope_data(payload: Dict[str, Any]) -> Dict[str, Any]:
    inner = payload.get("data")
    return inner if isinstance(inner, dict) else payload


def parse_ticket(payload: Dict[str, Any]) -> Optional[TicketDetails]:
    """Ticket fields from an issue/order/webhook body; None when no ticket number."""
    data = _envelope_data(payload)
    tickets = data.get("tickets")
    first = tickets[0] if isinstance(tickets, list) and tickets and isinstance(tickets[0], dict) else {}
    number = (
        data.get("ticket_number")
        or first.get("ticket_number")
        or first.get("etkt")
        or data.get("etkt")
    )
    if not number:
        return None
    return TicketDetails(
        ticket_number=str(number),
        record_locator=str(
            data.get("pnr") or data.get("airline_pnr") or first.get("pnr")
            or first.get("airline_pnr") or ""
        ),
        document_path=str(data.get("ticket_url") or first.get("ticket_url") or ""),
        ticket_id=str(data.get("ticket_id") or first.get("ticket_id") or first.get("id") or ""),
    )


def parse_order_status(payload: Dict[str, Any]) -> str:
    inner = payload.get("order")
    if not isinstance(inner, dict):
        inner = _envelope_data(payload)
    status = inner.get("order_status") or inner.get("status") or ""
    return str(status).lower()


class SupplierClient:
    """
    Thin wrapper around the flight inventory provider.

    One method per capability. Failures are raised as the typed errors in
    ``flightdesk.core.errors``; nothing here retries.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.base_url = settings.supplier_base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {settings.supplier_api_key or ''}",
                "Content-Type": "application/json",
            }
        )

    def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = self.base_url + path
        logger.debug("Supplier %s %s", method, path)
        try:
            resp = self.session.request(method, url, json=json, params=params, timeout=timeout)
        except requests.Timeout as exc:
            logger.warning("Supplier call %s timed out: %s", path, exc)
            raise SupplierTimeout(f"{path} timed out after {timeout}s") from exc
        except requests.ConnectionError as exc:
            logger.warning("Supplier unreachable on %s: %s", path, exc)
            raise NetworkUnreachable(f"{path}: {exc}") from exc

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}
        message = str(body.get("message") or body.get("error") or resp.reason or "")

        if resp.status_code == 404:
            logger.warning("Supplier %s returned 404: %s", path, message)
            raise NotFoundError(message or f"{path} not found")
        if resp.status_code >= 500:
            logger.warning("Supplier %s returned %s", path, resp.status_code)
            raise SupplierUnavailable(f"{path} returned {resp.status_code}")
        if resp.status_code >= 400:
            logger.warning("Supplier rejected %s (%s): %s", path, resp.status_code, message)
            raise SupplierRejected(str(body.get("code") or resp.status_code), message)

        status = body.get("status")
        if status is not None and status != "success":
            logger.warning("Supplier rejected %s: %s", path, message)
            raise SupplierRejected(str(body.get("code") or status), message or "rejected")
        return body

    def _post(self, command: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        return self._request(
            "POST",
            COMMANDS[command],
            timeout=timeout or self.settings.booking_timeout_seconds,
            json=payload,
        )

    # search

    def initiate_search(self, request: SearchRequest) -> str:
        pax = request.passengers
        path = COMMANDS["search"].format(
            trips=encode_trips(request), adt=pax.adults, chd=pax.children, inf=pax.infants
        )
        body = self._request(
            "GET",
            path,
            timeout=self.settings.search_timeout_seconds,
            params={"cabin": request.cabin, "direct": "true" if request.direct else "false"},
        )
        search_id = body.get("search_id")
        if not search_id:
            raise SupplierRejected("no_search_id", "Search response carried no search_id")
        return str(search_id)

    def poll_results(self, search_id: str, after: Optional[int] = None) -> Dict[str, Any]:
        params = {"after": after} if after is not None else None
        return self._request(
            "GET",
            COMMANDS["result"].format(search_id=search_id),
            timeout=self.settings.results_timeout_seconds,
            params=params,
        )

    # orders

    def check_fare(self, booking: Dict[str, Any]) -> Dict[str, Any]:
        return self._post("fare", {"booking": booking})

    def save_order(
        self,
        booking: Dict[str, Any],
        passengers: List[Dict[str, Any]],
        contact: Dict[str, str],
    ) -> str:
        body = self._post("save", {"booking": booking, "passengers": passengers, "contact": contact})
        order_id = body.get("order_id") or _envelope_data(body).get("order_id")
        if not order_id:
            raise SupplierRejected("no_order_id", "Save response carried no order_id")
        return str(order_id)

    def issue_order(self, order_id: str) -> Dict[str, Any]:
        return self._post(
            "issue", {"order_id": order_id}, timeout=self.settings.issue_timeout_seconds
        )

    def get_order_details(self, order_id: str) -> Dict[str, Any]:
        return self._post("order_details", {"order_id": order_id})

    def cancel_order(self, order_id: str) -> Dict[str, Any]:
        return self._post("cancel", {"order_id": order_id})

    # tickets

    def get_ticket_details(self, ticket_id: str) -> Dict[str, Any]:
        return self._post("ticket_details", {"ticket_id": ticket_id})

    def retrieve_ticket(self, airline_pnr: str, last_name: str) -> Dict[str, Any]:
        return self._post("ticket_retrieve", {"airline_pnr": airline_pnr, "last_name": last_name})

    def refund_ticket(
        self,
        ticket_id: str,
        legs: Optional[List[Any]] = None,
        total_fees: Optional[float] = None,
        passengers: Optional[List[Any]] = None,
    ) -> Dict[str, Any]:
        return self._post(
            "refund",
            {
                "ticket_id": ticket_id,
                "legs": legs or [],
                "total_fees": total_fees,
                "passengers": passengers or [],
            },
        )

    def void_ticket(self, ticket_id: str, passengers: Optional[List[Any]] = None) -> Dict[str, Any]:
        return self._post("void", {"ticket_id": ticket_id, "passengers": passengers or []})

    def exchange_ticket(
        self,
        ticket_id: str,
        exchange_legs: List[Any],
        total_fees: Optional[float] = None,
        passengers: Optional[List[Any]] = None,
    ) -> Dict[str, Any]:
        return self._post(
            "exchange",
            {
                "ticket_id": ticket_id,
                "exchange_legs": exchange_legs,
                "total_fees": total_fees,
                "passengers": passengers or [],
            },
        )
