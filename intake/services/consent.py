from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intake.core.config import CONSENT_VERSION
from intake.models.orm import ConsentLog
from intake.services.errors import SecondaryWriteFailure
from intake.services.security import UNKNOWN_CLIENT, first_forwarded_ip, hash_string

logger = logging.getLogger("intake.consent")


@dataclass(frozen=True)
class ClientMeta:
    """Raw client metadata for one request. Lives only for the request."""
    ip: str = UNKNOWN_CLIENT
    user_agent: str = ""

    @classmethod
    def from_headers(cls, forwarded_for: Optional[str], user_agent: Optional[str]) -> "ClientMeta":
        return cls(ip=first_forwarded_ip(forwarded_for), user_agent=user_agent or "")

    @property
    def fingerprint(self) -> str:
        """Rate-limit key: digest of the client address, never the address itself."""
        return hash_string(self.ip)


class ConsentRecorder:
    """Writes the append-only consent audit rows for a submission."""

    def __init__(self, version: str = CONSENT_VERSION, hasher: Callable[[str], str] = hash_string):
        self.version = version
        self._hash = hasher

    def build(
        self,
        lead_id: Optional[str],
        email: str,
        language: str,
        marketing: bool,
        meta: ClientMeta,
        user_id: Optional[str] = None,
    ) -> List[ConsentLog]:
        ip_hash = self._hash(meta.ip)
        ua_hash = self._hash(meta.user_agent)
        types = ["privacy"] + (["marketing"] if marketing is True else [])
        return [
            ConsentLog(
                user_id=user_id,
                lead_id=lead_id,
                email=email,
                consent_type=ctype,
                version=self.version,
                language=language,
                ip_hash=ip_hash,
                user_agent_hash=ua_hash,
            )
            for ctype in types
        ]

    def record(
        self,
        db: Session,
        lead_id: Optional[str],
        email: str,
        language: str,
        marketing: bool,
        meta: ClientMeta,
        user_id: Optional[str] = None,
    ) -> List[ConsentLog]:
        rows = self.build(lead_id, email, language, marketing, meta, user_id=user_id)
        try:
            db.add_all(rows)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise SecondaryWriteFailure("consent", lead_id, type(e).__name__) from e
        logger.info(
            "consent: recorded lead=%s types=%s version=%s",
            lead_id, ",".join(r.consent_type for r in rows), self.version,
        )
        return rows
