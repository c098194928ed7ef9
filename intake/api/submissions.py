# intake/api/submissions.py
"""
Public form endpoints. No authentication required; a session token, when
present, links the lead to the signed-in account.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from intake.api.deps import client_meta, lead_service, verification_service
from intake.auth.permissions import SessionContext, get_optional_session
from intake.core.config import MAX_UPLOAD_BYTES
from intake.models.schemas import SubmissionResult
from intake.services.consent import ClientMeta
from intake.services.document_store import UploadedFile
from intake.services.errors import ErrorKind, FieldError
from intake.services.lead_service import LeadWriteService, failure
from intake.services.verification_service import VerificationWriteService

router = APIRouter(prefix="/api", tags=["submissions"])
logger = logging.getLogger("intake.api.submissions")

STATUS_BY_KIND = {
    ErrorKind.VALIDATION.value: 422,
    ErrorKind.RATE_LIMITED.value: 429,
    ErrorKind.NOT_FOUND.value: 404,
    ErrorKind.INVALID_TRANSITION.value: 409,
    ErrorKind.SUBMISSION_FAILED.value: 503,
}


def to_response(result: SubmissionResult) -> JSONResponse:
    status = 200 if result.success else STATUS_BY_KIND.get(result.error or "", 503)
    return JSONResponse(status_code=status, content=result.model_dump(mode="json", by_alias=True, exclude_none=True))


def _user_id(session: Optional[SessionContext]) -> Optional[str]:
    return session.user_id if session else None


@router.post("/leads/waitlist", response_model=SubmissionResult)
def submit_waitlist(
    payload: Dict[str, Any] = Body(...),
    client: ClientMeta = Depends(client_meta),
    session: Optional[SessionContext] = Depends(get_optional_session),
    service: LeadWriteService = Depends(lead_service),
):
    return to_response(service.submit_waitlist(payload, client, _user_id(session)))


@router.post("/leads/investor", response_model=SubmissionResult)
def submit_investor_interest(
    payload: Dict[str, Any] = Body(...),
    client: ClientMeta = Depends(client_meta),
    session: Optional[SessionContext] = Depends(get_optional_session),
    service: LeadWriteService = Depends(lead_service),
):
    return to_response(service.submit_investor_interest(payload, client, _user_id(session)))


@router.post("/leads/student", response_model=SubmissionResult)
def submit_student_request(
    payload: Dict[str, Any] = Body(...),
    client: ClientMeta = Depends(client_meta),
    session: Optional[SessionContext] = Depends(get_optional_session),
    service: LeadWriteService = Depends(lead_service),
):
    return to_response(service.submit_student_request(payload, client, _user_id(session)))


@router.post("/leads/tourist", response_model=SubmissionResult)
def submit_tourist_request(
    payload: Dict[str, Any] = Body(...),
    client: ClientMeta = Depends(client_meta),
    session: Optional[SessionContext] = Depends(get_optional_session),
    service: LeadWriteService = Depends(lead_service),
):
    return to_response(service.submit_tourist_request(payload, client, _user_id(session)))


async def _read_all(files: List[UploadFile]) -> List[UploadedFile]:
    out: List[UploadedFile] = []
    for f in files:
        # one byte past the cap is enough for the size check to trip
        data = await f.read(MAX_UPLOAD_BYTES + 1)
        out.append(UploadedFile(
            filename=f.filename or "",
            content_type=f.content_type or "application/octet-stream",
            data=data,
        ))
    return out


@router.post("/verifications", response_model=SubmissionResult)
async def submit_verification(
    payload: str = Form(...),
    id_files: List[UploadFile] = File(default=[]),
    proof_files: List[UploadFile] = File(default=[]),
    client: ClientMeta = Depends(client_meta),
    session: Optional[SessionContext] = Depends(get_optional_session),
    service: VerificationWriteService = Depends(verification_service),
):
    """Multipart: `payload` is the JSON-encoded form, files go in id_files / proof_files."""
    try:
        data = json.loads(payload)
    except ValueError:
        return to_response(failure(
            ErrorKind.VALIDATION, [FieldError("payload", "json_invalid", "payload must be a JSON object")]
        ))

    ids = await _read_all(id_files)
    proofs = await _read_all(proof_files)
    result = await run_in_threadpool(service.submit, data, ids, proofs, client, _user_id(session))
    return to_response(result)
