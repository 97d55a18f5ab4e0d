from fastapi import APIRouter, Depends

from flightdesk.api import get_ticket_monitor
from flightdesk.models.schemas import MonitorStatusSchema
from flightdesk.services.ticket_monitor import TicketIssuanceMonitor

router = APIRouter()


@router.get("/health")
def healthcheck(monitor: TicketIssuanceMonitor = Depends(get_ticket_monitor)) -> dict:
    return {
        "status": "ok",
        "monitor": MonitorStatusSchema.from_domain(monitor.status()).model_dump(mode="json"),
    }
