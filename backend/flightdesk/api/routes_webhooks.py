import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

from flightdesk.api import get_webhook_ingress
from flightdesk.services.webhook_service import WebhookIngress

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/supplier")
async def supplier_webhook(
    request: Request,
    ingress: WebhookIngress = Depends(get_webhook_ingress),
) -> Dict[str, Any]:
    # always 200; a non-2xx makes the supplier redeliver
    raw = await request.body()
    try:
        payload = json.loads(raw or b"{}")
    except ValueError:
        logger.warning("Webhook body is not valid JSON (%s bytes)", len(raw))
        return {"received": True, "accepted": False, "reason": "invalid JSON"}
    return await run_in_threadpool(ingress.handle, payload)
