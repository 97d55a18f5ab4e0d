from typing import Any, Dict
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

from flightdesk.api import get_payment_service
from flightdesk.models.schemas import (
    BookingStatusSummary,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
)
from flightdesk.services.payment_service import PaymentService

router = APIRouter()


@router.post("/initiate", response_model=PaymentInitiateResponse)
def initiate_payment(
    body: PaymentInitiateRequest,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentInitiateResponse:
    url = service.initiate(body.booking_id, return_url=body.return_url)
    return PaymentInitiateResponse(booking_id=body.booking_id, url=url)


@router.post("/callback", response_model=BookingStatusSummary)
async def payment_callback(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
) -> BookingStatusSummary:
    # the gateway may send its fields as query parameters, a urlencoded form or JSON
    payload: Dict[str, Any] = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        body = await request.json()
        if isinstance(body, dict):
            payload.update(body)
    elif "application/x-www-form-urlencoded" in content_type:
        raw = (await request.body()).decode("utf-8", errors="replace")
        payload.update(dict(parse_qsl(raw)))
    booking = await run_in_threadpool(service.handle_callback, payload)
    return BookingStatusSummary.from_domain(booking)
