# intake/services/verification_service.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from intake.core.config import (
    ID_DOCS_BUCKET,
    PROOF_OF_ADDRESS_BUCKET,
    SIGNED_URL_TTL,
    UPLOAD_TIMEOUT,
    UPLOAD_WORKERS,
)
from intake.models.orm import Lead, Verification
from intake.models.schemas import SubmissionResult
from intake.models.types import ReviewDecision, values
from intake.services import event_bus, validator
from intake.services.consent import ClientMeta, ConsentRecorder
from intake.services.document_store import (
    DocumentStore,
    DocumentStoreError,
    UploadedFile,
    build_document_path,
)
from intake.services.errors import (
    FieldError,
    InvalidTransition,
    NotFound,
    RateLimitExceeded,
    StorageError,
    ValidationFailed,
)
from intake.services.lead_service import LeadWriteService, SubmissionWriter
from intake.services.rate_limiter import RateLimiter

logger = logging.getLogger("intake.verifications")

# approved and rejected are final; in_review is reserved, nothing sets it yet
REVIEWABLE_STATUSES = ("submitted", "in_review")


class VerificationWriteService(SubmissionWriter):
    def __init__(
        self,
        db: Session,
        store: DocumentStore,
        limiter: RateLimiter,
        leads: Optional[LeadWriteService] = None,
        consent: Optional[ConsentRecorder] = None,
        *,
        upload_timeout: float = UPLOAD_TIMEOUT,
        upload_workers: int = UPLOAD_WORKERS,
    ):
        super().__init__(db, limiter, consent)
        self.store = store
        # review() approves through the lead service, never by touching leads directly
        self.leads = leads or LeadWriteService(db, limiter, self.consent)
        self.upload_timeout = upload_timeout
        self.upload_workers = max(1, upload_workers)

    # ---------------- Submission ----------------

    def submit(
        self,
        payload: Mapping[str, Any],
        id_files: Sequence[UploadedFile],
        proof_files: Sequence[UploadedFile],
        client: ClientMeta,
        user_id: Optional[str] = None,
    ) -> SubmissionResult:
        return self._guarded(
            "verification",
            lambda: self._submit(payload, list(id_files), list(proof_files), client, user_id),
        )

    def _submit(self, payload, id_files, proof_files, client, user_id) -> SubmissionResult:
        if not self.limiter.allow(client.fingerprint):
            raise RateLimitExceeded()

        result = validator.validate("verification", payload)
        is_investor = isinstance(payload, Mapping) and payload.get("verification_type") == "investor"
        errors: List[FieldError] = [] if result.ok else list(result.errors)
        errors += validator.validate_files("id_files", id_files)
        if is_investor:
            errors += validator.validate_files("proof_files", proof_files)
        if errors:
            raise ValidationFailed(errors)
        v = result.value

        lead_id = str(v.lead_id)
        lead = self.db.get(Lead, lead_id)
        if lead is None:
            raise NotFound(f"lead {lead_id}")
        lead_email = lead.email

        id_paths = self._upload_all(ID_DOCS_BUCKET, lead_id, "id", id_files)
        proof_paths: List[str] = []
        if v.verification_type == "investor":
            proof_paths = self._upload_all(PROOF_OF_ADDRESS_BUCKET, lead_id, "proof", proof_files)

        verification = Verification(
            lead_id=lead_id,
            verification_type=v.verification_type,
            full_name=v.full_name,
            dob=v.dob,
            nationality=v.nationality,
            address_line=v.address_line,
            city=v.city,
            postal_code=v.postal_code,
            country=v.country,
            id_doc_type=v.id_doc_type,
            id_doc_number=v.id_doc_number,
            id_doc_files=id_paths,
            proof_of_address_files=proof_paths,
            consent_privacy=True,
            consent_marketing=v.consent_marketing,
            status="submitted",
        )
        try:
            self._commit_primary(verification, "verification")
        except StorageError:
            if id_paths or proof_paths:
                # uploaded objects now have no row pointing at them
                event_bus.secondary_write_failed(
                    "verification_row", lead_id, orphaned_files=id_paths + proof_paths
                )
            raise
        verification_id = verification.id
        logger.info(
            "verification submitted id=%s lead=%s type=%s id_files=%d/%d proof_files=%d",
            verification_id, lead_id, v.verification_type,
            len(id_paths), len(id_files), len(proof_paths),
        )

        self._record_consent(lead_id, lead_email, v.language, v.consent_marketing, client, user_id)
        return SubmissionResult(success=True, verification_id=verification_id)

    def _upload_all(self, bucket: str, lead_id: str, kind: str, files: List[UploadedFile]) -> List[str]:
        """Upload concurrently; return the paths that made it, in input order."""
        if not files:
            return []
        jobs = [(build_document_path(lead_id, kind, f.filename), f) for f in files]
        pool = ThreadPoolExecutor(
            max_workers=min(self.upload_workers, len(jobs)), thread_name_prefix="intake-upload"
        )
        stored: List[str] = []
        try:
            futures = [
                (path, pool.submit(self.store.upload, bucket, path, f.data, f.content_type))
                for path, f in jobs
            ]
            for path, fut in futures:
                try:
                    fut.result(timeout=self.upload_timeout)
                    stored.append(path)
                except FuturesTimeout:
                    logger.warning("upload timed out bucket=%s path=%s", bucket, path)
                    event_bus.secondary_write_failed("upload", lead_id, bucket=bucket, path=path, error="timeout")
                except DocumentStoreError as e:
                    logger.warning("upload failed bucket=%s path=%s: %s", bucket, path, e)
                    event_bus.secondary_write_failed("upload", lead_id, bucket=bucket, path=path, error=str(e))
                except Exception:
                    logger.exception("upload crashed bucket=%s path=%s", bucket, path)
                    event_bus.secondary_write_failed("upload", lead_id, bucket=bucket, path=path, error="unexpected")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return stored

    # ---------------- Admin review ----------------

    def review(self, verification_id: str, decision: str, notes: Optional[str] = None) -> Verification:
        """
        Approve or reject a submitted verification.

        Approved and rejected are final. Approval also marks the parent lead
        `qualified` via LeadWriteService.update_status.
        """
        if decision not in values(ReviewDecision):
            raise ValidationFailed([FieldError("decision", "literal_error", f"unknown decision {decision!r}")])
        # status guard lives in the UPDATE so two reviewers can't both win
        stmt = (
            update(Verification)
            .where(Verification.id == verification_id, Verification.status.in_(REVIEWABLE_STATUSES))
            .values(status=decision, admin_notes=notes or None)
            .execution_options(synchronize_session=False)
        )
        try:
            claimed = self.db.execute(stmt).rowcount
            if claimed:
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("verification review failed id=%s", verification_id)
            raise StorageError("verification review") from e

        if not claimed:
            ver = self.db.get(Verification, verification_id)
            if ver is None:
                raise NotFound(f"verification {verification_id}")
            self.db.refresh(ver)
            raise InvalidTransition(f"verification {verification_id} already {ver.status}")

        ver = self.db.get(Verification, verification_id)
        logger.info("verification reviewed id=%s decision=%s", verification_id, decision)

        if decision == "approved":
            self.leads.update_status(ver.lead_id, "qualified")
        return ver

    def list_verifications(self, status: Optional[str] = None, limit: int = 200) -> List[Verification]:
        stmt = select(Verification).options(selectinload(Verification.lead))
        if status:
            stmt = stmt.where(Verification.status == status)
        stmt = stmt.order_by(Verification.created_at.desc()).limit(limit)
        return list(self.db.scalars(stmt))

    def document_links(self, verification_id: str, ttl_seconds: int = SIGNED_URL_TTL) -> List[Dict[str, str]]:
        ver = self.db.get(Verification, verification_id)
        if ver is None:
            raise NotFound(f"verification {verification_id}")
        links: List[Dict[str, str]] = []
        pairs = [(ID_DOCS_BUCKET, p) for p in ver.id_doc_files or []]
        pairs += [(PROOF_OF_ADDRESS_BUCKET, p) for p in ver.proof_of_address_files or []]
        for bucket, path in pairs:
            try:
                url = self.store.signed_url(bucket, path, ttl_seconds)
            except DocumentStoreError as e:
                logger.warning("signed url failed bucket=%s path=%s: %s", bucket, path, e)
                continue
            links.append({"bucket": bucket, "path": path, "url": url})
        return links
