from typing import Any

from fastapi import HTTPException
from starlette.requests import Request

from flightdesk.services.booking_machine import BookingStateMachine
from flightdesk.services.payment_service import PaymentService
from flightdesk.services.search_aggregator import SearchAggregator
from flightdesk.services.ticket_monitor import TicketIssuanceMonitor
from flightdesk.services.webhook_service import WebhookIngress
from flightdesk.supplier.client import SupplierClient


def _from_state(request: Request, name: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=500, detail=f"{name} not initialized")
    return component


def get_booking_machine(request: Request) -> BookingStateMachine:
    return _from_state(request, "booking_machine")


def get_search_aggregator(request: Request) -> SearchAggregator:
    return _from_state(request, "search_aggregator")


def get_payment_service(request: Request) -> PaymentService:
    return _from_state(request, "payment_service")


def get_webhook_ingress(request: Request) -> WebhookIngress:
    return _from_state(request, "webhook_ingress")


def get_ticket_monitor(request: Request) -> TicketIssuanceMonitor:
    return _from_state(request, "ticket_monitor")


def get_supplier_client(request: Request) -> SupplierClient:
    return _from_state(request, "supplier_client")
