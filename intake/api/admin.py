# intake/api/admin.py
"""
Admin endpoints: lead triage and verification review.
All routes require a session whose role is the configured admin role.
"""

import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from intake.api.deps import lead_service, verification_service
from intake.auth.permissions import SessionContext, require_admin
from intake.core.config import SIGNED_URL_TTL
from intake.models.schemas import (
    DocumentLink,
    LeadOut,
    LeadPage,
    LeadStatusUpdate,
    ReviewIn,
    VerificationOut,
)
from intake.models.types import LeadStatus, LeadType, VerificationStatus
from intake.services import event_bus
from intake.services.errors import IntakeError
from intake.services.lead_service import LeadWriteService
from intake.services.verification_service import VerificationWriteService
from intake.api.submissions import STATUS_BY_KIND

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger("intake.api.admin")


def _raise(e: IntakeError) -> NoReturn:
    raise HTTPException(status_code=STATUS_BY_KIND.get(e.kind.value, 500), detail=e.kind.value)


@router.get("/leads", response_model=LeadPage)
def list_leads(
    lead_type: Optional[LeadType] = None,
    status: Optional[LeadStatus] = None,
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    admin: SessionContext = Depends(require_admin),
    service: LeadWriteService = Depends(lead_service),
):
    items, total = service.list_leads(
        lead_type=lead_type, status=status, search=search, page=page, page_size=page_size
    )
    logger.info("GET /admin/leads total=%d page=%d by=%s", total, page, admin.user_id)
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/leads/export.csv")
def export_leads(
    lead_type: Optional[LeadType] = None,
    status: Optional[LeadStatus] = None,
    search: Optional[str] = Query(None, max_length=100),
    admin: SessionContext = Depends(require_admin),
    service: LeadWriteService = Depends(lead_service),
):
    body = service.export_csv(lead_type=lead_type, status=status, search=search)
    logger.info("GET /admin/leads/export.csv by=%s", admin.user_id)
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="leads.csv"'},
    )


@router.get("/leads/orphans", response_model=List[LeadOut])
def orphaned_leads(
    admin: SessionContext = Depends(require_admin),
    service: LeadWriteService = Depends(lead_service),
):
    """Typed leads missing their profile/request row, for reconciliation."""
    return service.find_orphaned_leads()


@router.patch("/leads/{lead_id}/status", response_model=LeadOut)
def update_lead_status(
    lead_id: str,
    payload: LeadStatusUpdate,
    admin: SessionContext = Depends(require_admin),
    service: LeadWriteService = Depends(lead_service),
):
    try:
        lead = service.update_status(lead_id, payload.status)
    except IntakeError as e:
        _raise(e)
    logger.info("PATCH /admin/leads/%s/status=%s by=%s", lead_id, payload.status, admin.user_id)
    return lead


@router.get("/verifications", response_model=List[VerificationOut])
def list_verifications(
    status: Optional[VerificationStatus] = None,
    admin: SessionContext = Depends(require_admin),
    service: VerificationWriteService = Depends(verification_service),
):
    return service.list_verifications(status=status)


@router.post("/verifications/{verification_id}/review", response_model=VerificationOut)
def review_verification(
    verification_id: str,
    payload: ReviewIn,
    admin: SessionContext = Depends(require_admin),
    service: VerificationWriteService = Depends(verification_service),
):
    try:
        ver = service.review(verification_id, payload.decision, payload.notes)
    except IntakeError as e:
        _raise(e)
    logger.info("review verification=%s decision=%s by=%s", verification_id, payload.decision, admin.user_id)
    return ver


@router.get("/verifications/{verification_id}/documents", response_model=List[DocumentLink])
def verification_documents(
    verification_id: str,
    ttl: int = Query(SIGNED_URL_TTL, ge=60, le=24 * 3600),
    admin: SessionContext = Depends(require_admin),
    service: VerificationWriteService = Depends(verification_service),
):
    try:
        return service.document_links(verification_id, ttl_seconds=ttl)
    except IntakeError as e:
        _raise(e)


@router.get("/events")
def operator_events(
    since: int = Query(0, ge=0),
    limit: int = Query(200, ge=1, le=500),
    admin: SessionContext = Depends(require_admin),
):
    """Secondary-write failures and other post-acceptance problems."""
    items = event_bus.collect_since("*", since, limit=limit)
    return {"ok": True, "events": items, "last_seq": items[-1]["seq"] if items else since}
