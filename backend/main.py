import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flightdesk.api import routes_booking, routes_health, routes_payment, routes_search, routes_webhooks
from flightdesk.core.config import Settings, get_settings
from flightdesk.core.errors import (
    ConcurrencyConflict,
    FlightDeskError,
    InvalidTransition,
    NotFoundError,
    PaymentVerificationError,
    PersistenceError,
    SupplierRejected,
    TransportError,
    ValidationError,
)
from flightdesk.core.logging import configure_logging
from flightdesk.services.booking_machine import BookingStateMachine
from flightdesk.services.notifications import NotificationDispatcher, build_notifier
from flightdesk.services.payment_service import PaymentGateway, PaymentService
from flightdesk.services.search_aggregator import SearchAggregator
from flightdesk.services.ticket_monitor import TicketIssuanceMonitor
from flightdesk.services.webhook_service import WebhookIngress
from flightdesk.storage.locks import BookingLocks
from flightdesk.storage.repository import InMemoryRepository
from flightdesk.supplier.client import SupplierClient

logger = logging.getLogger(__name__)

# first match wins, so subclasses come before their parents
ERROR_STATUS = (
    (InvalidTransition, 409),
    (ValidationError, 400),
    (PaymentVerificationError, 400),
    (NotFoundError, 404),
    (SupplierRejected, 422),
    (TransportError, 503),
    (ConcurrencyConflict, 409),
    (PersistenceError, 503),
)


def _status_for(exc: FlightDeskError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def handle_flightdesk_error(request: Request, exc: FlightDeskError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    detail = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, SupplierRejected):
        detail["code"] = exc.code
    return JSONResponse(status_code=status, content=detail)


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[SupplierClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    repository = InMemoryRepository(
        id_prefix=settings.booking_id_prefix, id_start=settings.booking_id_start
    )
    client = client or SupplierClient(settings)
    machine = BookingStateMachine(
        repository=repository,
        client=client,
        settings=settings,
        locks=BookingLocks(timeout=settings.lock_timeout_seconds),
        notifications=NotificationDispatcher(build_notifier(settings)),
    )
    monitor = TicketIssuanceMonitor(repository=repository, machine=machine, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.monitor_enabled:
            monitor.start()
        try:
            yield
        finally:
            monitor.stop()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(FlightDeskError, handle_flightdesk_error)

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(routes_search.router, prefix="/flights", tags=["search"])
    app.include_router(routes_booking.router, tags=["booking"])
    app.include_router(routes_payment.router, prefix="/payment", tags=["payment"])
    app.include_router(routes_webhooks.router, prefix="/webhooks", tags=["webhooks"])

    # Inject components into state for dependencies
    app.state.settings = settings
    app.state.repository = repository
    app.state.supplier_client = client
    app.state.booking_machine = machine
    app.state.search_aggregator = SearchAggregator(client=client, settings=settings)
    app.state.payment_service = PaymentService(PaymentGateway(settings), machine)
    app.state.webhook_ingress = WebhookIngress(machine)
    app.state.ticket_monitor = monitor
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
