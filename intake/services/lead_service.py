# intake/services/lead_service.py
"""
Lead intake: one Lead row per accepted submission, plus its type-specific
child row and the consent audit trail.

Write order is rate limit -> validation -> Lead -> child -> consent. Only the
Lead insert is allowed to fail the submission; the child row and consent rows
are best-effort follow-ups whose failures are logged and published on the
event bus so operators can reconcile them later.
"""
from __future__ import annotations

import csv
import io
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intake.models.orm import (
    InvestorProfile,
    Lead,
    StudentRequest,
    TouristRequest,
    Verification,
)
from intake.models.schemas import FieldErrorOut, SubmissionResult
from intake.models.types import LeadStatus, values
from intake.services import event_bus, validator
from intake.services.consent import ClientMeta, ConsentRecorder
from intake.services.errors import (
    ErrorKind,
    FieldError,
    IntakeError,
    NotFound,
    RateLimitExceeded,
    SecondaryWriteFailure,
    StorageError,
    ValidationFailed,
)
from intake.services.rate_limiter import RateLimiter

logger = logging.getLogger("intake.leads")

CSV_HEADER = ["Name", "Email", "Phone", "Type", "Status", "Language", "Source", "Created At"]


def failure(kind: ErrorKind, errors: Optional[List[FieldError]] = None) -> SubmissionResult:
    return SubmissionResult(
        success=False,
        error=kind.value,
        errors=[FieldErrorOut(**e.to_dict()) for e in (errors or [])],
    )


class SubmissionWriter:
    """Shared plumbing for services that accept public submissions."""

    def __init__(self, db: Session, limiter: RateLimiter, consent: Optional[ConsentRecorder] = None):
        self.db = db
        self.limiter = limiter
        self.consent = consent or ConsentRecorder()

    def _guarded(self, op: str, fn: Callable[[], SubmissionResult]) -> SubmissionResult:
        try:
            return fn()
        except ValidationFailed as e:
            logger.info("%s: rejected, %d invalid field(s)", op, len(e.errors))
            return failure(e.kind, e.errors)
        except IntakeError as e:
            logger.info("%s: failed kind=%s", op, e.kind.value)
            return failure(e.kind)
        except Exception:
            # never let storage/driver detail reach the submitter
            self.db.rollback()
            logger.exception("%s: unexpected error", op)
            return failure(ErrorKind.SUBMISSION_FAILED)

    def _admit(self, schema: str, payload: Mapping[str, Any], client: ClientMeta) -> Any:
        if not self.limiter.allow(client.fingerprint):
            raise RateLimitExceeded()
        result = validator.validate(schema, payload)
        if not result.ok:
            raise ValidationFailed(result.errors)
        return result.value

    def _commit_primary(self, obj: Any, what: str) -> None:
        try:
            self.db.add(obj)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("%s insert failed", what)
            raise StorageError(what) from e

    def _commit_secondary(self, obj: Any, step: str, lead_id: str) -> bool:
        try:
            self.db.add(obj)
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("secondary write failed: %s", SecondaryWriteFailure(step, lead_id, type(e).__name__), exc_info=True)
            event_bus.secondary_write_failed(step, lead_id, error=type(e).__name__)
            return False

    def _record_consent(
        self,
        lead_id: Optional[str],
        email: str,
        language: str,
        marketing: bool,
        client: ClientMeta,
        user_id: Optional[str],
    ) -> None:
        try:
            self.consent.record(self.db, lead_id, email, language, marketing, client, user_id=user_id)
        except SecondaryWriteFailure as e:
            logger.error("secondary write failed: %s", e, exc_info=True)
            event_bus.secondary_write_failed("consent", lead_id, error=e.detail)


class LeadWriteService(SubmissionWriter):

    # ---------------- Public submissions ----------------

    def submit_waitlist(self, payload: Mapping[str, Any], client: ClientMeta, user_id: Optional[str] = None) -> SubmissionResult:
        return self._guarded("waitlist", lambda: self._waitlist(payload, client, user_id))

    def submit_investor_interest(self, payload: Mapping[str, Any], client: ClientMeta, user_id: Optional[str] = None) -> SubmissionResult:
        return self._guarded("investor_interest", lambda: self._investor(payload, client, user_id))

    def submit_student_request(self, payload: Mapping[str, Any], client: ClientMeta, user_id: Optional[str] = None) -> SubmissionResult:
        return self._guarded("student_request", lambda: self._student(payload, client, user_id))

    def submit_tourist_request(self, payload: Mapping[str, Any], client: ClientMeta, user_id: Optional[str] = None) -> SubmissionResult:
        return self._guarded("tourist_request", lambda: self._tourist(payload, client, user_id))

    def _new_lead(self, lead_type: str, v: Any, source: str, user_id: Optional[str]) -> str:
        lead = Lead(
            user_id=user_id,
            lead_type=lead_type,
            name=v.name,
            email=v.email,
            phone=getattr(v, "phone", None),
            language=v.language,
            status="new",
            source=source,
        )
        self._commit_primary(lead, "lead")
        logger.info("lead created id=%s type=%s source=%s", lead.id, lead_type, source)
        return lead.id

    def _waitlist(self, payload, client, user_id) -> SubmissionResult:
        v = self._admit("waitlist", payload, client)

        existing = self.db.scalars(
            select(Lead.id).where(Lead.email == v.email, Lead.lead_type == "waitlist").limit(1)
        ).first()
        if existing:
            # same answer as a fresh signup so the form can't reveal which emails exist
            logger.info("waitlist: duplicate signup ignored lead=%s", existing)
            return SubmissionResult(success=True)

        lead_id = self._new_lead("waitlist", v, f"waitlist_{v.interest}", user_id)
        # the form has no consent fields: privacy is always logged, marketing never
        self._record_consent(lead_id, v.email, v.language, False, client, user_id)
        return SubmissionResult(success=True)

    def _investor(self, payload, client, user_id) -> SubmissionResult:
        v = self._admit("investor-interest", payload, client)
        lead_id = self._new_lead("investor", v, "investor_form", user_id)

        profile = InvestorProfile(
            lead_id=lead_id,
            country=v.country,
            investor_type=v.investor_type,
            budget_range=v.budget_range,
            risk_tolerance=v.risk_tolerance,
            timeframe=v.timeframe,
            notes=v.notes,
            property_interest_id=str(v.property_interest_id) if v.property_interest_id else None,
        )
        self._commit_secondary(profile, "investor_profile", lead_id)

        self._record_consent(lead_id, v.email, v.language, v.consent_marketing, client, user_id)
        return SubmissionResult(success=True, lead_id=lead_id)

    def _student(self, payload, client, user_id) -> SubmissionResult:
        v = self._admit("student-request", payload, client)
        lead_id = self._new_lead("student", v, f"student_{v.request_type}", user_id)

        req = StudentRequest(
            lead_id=lead_id,
            listing_id=str(v.listing_id),
            request_type=v.request_type,
            university=v.university,
            program=v.program,
            move_in_date=v.move_in_date,
            budget=v.budget,
            guarantor=v.guarantor,
            message=v.message,
            preferred_dates=[d.isoformat() for d in v.preferred_dates],
            status="pending",
        )
        request_id = req.id if self._commit_secondary(req, "student_request", lead_id) else None

        self._record_consent(lead_id, v.email, v.language, v.consent_marketing, client, user_id)
        return SubmissionResult(success=True, lead_id=lead_id, request_id=request_id)

    def _tourist(self, payload, client, user_id) -> SubmissionResult:
        v = self._admit("tourist-request", payload, client)
        lead_id = self._new_lead("tourist", v, "tourist_request", user_id)

        req = TouristRequest(
            lead_id=lead_id,
            listing_id=str(v.listing_id),
            guests=v.guests,
            date_from=v.date_from,
            date_to=v.date_to,
            message=v.message,
            status="pending",
        )
        request_id = req.id if self._commit_secondary(req, "tourist_request", lead_id) else None

        self._record_consent(lead_id, v.email, v.language, v.consent_marketing, client, user_id)
        return SubmissionResult(success=True, lead_id=lead_id, request_id=request_id)

    # ---------------- Admin ----------------

    def update_status(self, lead_id: str, status: str) -> Lead:
        if status not in values(LeadStatus):
            raise ValidationFailed([FieldError("status", "literal_error", f"unknown lead status {status!r}")])
        lead = self.db.get(Lead, lead_id)
        if lead is None:
            raise NotFound(f"lead {lead_id}")
        previous = lead.status
        lead.status = status
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("lead status update failed id=%s", lead_id)
            raise StorageError("lead status") from e
        logger.info("lead status id=%s %s -> %s", lead_id, previous, status)
        return lead

    def _filtered(self, lead_type: Optional[str], status: Optional[str], search: Optional[str]):
        conds = []
        if lead_type:
            conds.append(Lead.lead_type == lead_type)
        if status:
            conds.append(Lead.status == status)
        if search:
            term = search.strip()
            conds.append(or_(Lead.name.icontains(term, autoescape=True), Lead.email.icontains(term, autoescape=True)))
        return conds

    def list_leads(
        self,
        *,
        lead_type: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Lead], int]:
        """Newest first, paginated. Returns (items, total matching)."""
        conds = self._filtered(lead_type, status, search)
        total = self.db.scalar(select(func.count()).select_from(Lead).where(*conds)) or 0
        page = max(1, page)
        stmt = (
            select(Lead)
            .where(*conds)
            .order_by(Lead.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(self.db.scalars(stmt)), total

    def export_csv(self, *, lead_type: Optional[str] = None, status: Optional[str] = None, search: Optional[str] = None) -> str:
        stmt = select(Lead).where(*self._filtered(lead_type, status, search)).order_by(Lead.created_at.desc())
        buf = io.StringIO()
        w = csv.writer(buf, quoting=csv.QUOTE_ALL)
        w.writerow(CSV_HEADER)
        for lead in self.db.scalars(stmt):
            w.writerow([
                lead.name,
                lead.email,
                lead.phone or "",
                lead.lead_type,
                lead.status,
                lead.language,
                lead.source or "",
                lead.created_at.isoformat() if lead.created_at else "",
            ])
        return buf.getvalue()

    def find_orphaned_leads(self) -> List[Lead]:
        """Typed leads whose child record never got written."""
        stmt = (
            select(Lead)
            .where(
                or_(
                    and_(Lead.lead_type == "investor", ~Lead.investor_profile.has()),
                    and_(Lead.lead_type == "student", ~Lead.student_request.has()),
                    and_(Lead.lead_type == "tourist", ~Lead.tourist_request.has()),
                )
            )
            .order_by(Lead.created_at.desc())
        )
        return list(self.db.scalars(stmt))

    # ---------------- Signed-in user ----------------

    def dashboard(self, user_id: str) -> Dict[str, list]:
        leads = list(self.db.scalars(
            select(Lead).where(Lead.user_id == user_id).order_by(Lead.created_at.desc())
        ))
        ids = [l.id for l in leads]
        if not ids:
            return {"leads": [], "verifications": [], "student_requests": [], "tourist_requests": []}
        return {
            "leads": leads,
            "verifications": list(self.db.scalars(
                select(Verification).where(Verification.lead_id.in_(ids)).order_by(Verification.created_at.desc())
            )),
            "student_requests": list(self.db.scalars(
                select(StudentRequest).where(StudentRequest.lead_id.in_(ids)).order_by(StudentRequest.created_at.desc())
            )),
            "tourist_requests": list(self.db.scalars(
                select(TouristRequest).where(TouristRequest.lead_id.in_(ids)).order_by(TouristRequest.created_at.desc())
            )),
        }
