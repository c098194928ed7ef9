from fastapi import APIRouter, Depends
import logging

from intake.api.deps import lead_service
from intake.auth.permissions import SessionContext, get_session
from intake.models.schemas import DashboardOut
from intake.services.lead_service import LeadWriteService

router = APIRouter(prefix="/api/me", tags=["dashboard"])
logger = logging.getLogger("intake.api.dashboard")


@router.get("/dashboard", response_model=DashboardOut)
def my_dashboard(
    session: SessionContext = Depends(get_session),
    service: LeadWriteService = Depends(lead_service),
):
    """The caller's own leads, verifications and requests."""
    data = service.dashboard(session.user_id)
    logger.info("GET /me/dashboard leads=%d", len(data["leads"]))
    return data
