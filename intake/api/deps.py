# intake/api/deps.py
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from intake.core.db import get_db
from intake.services.consent import ClientMeta
from intake.services.document_store import DocumentStore, get_document_store
from intake.services.lead_service import LeadWriteService
from intake.services.rate_limiter import RateLimiter, get_rate_limiter
from intake.services.verification_service import VerificationWriteService


def client_meta(
    x_forwarded_for: Optional[str] = Header(default=None),
    user_agent: Optional[str] = Header(default=None),
) -> ClientMeta:
    return ClientMeta.from_headers(x_forwarded_for, user_agent)


def rate_limiter() -> RateLimiter:
    return get_rate_limiter()


def document_store() -> DocumentStore:
    return get_document_store()


def lead_service(
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(rate_limiter),
) -> LeadWriteService:
    return LeadWriteService(db, limiter)


def verification_service(
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(rate_limiter),
    store: DocumentStore = Depends(document_store),
    leads: LeadWriteService = Depends(lead_service),
) -> VerificationWriteService:
    return VerificationWriteService(db, store, limiter, leads=leads)
