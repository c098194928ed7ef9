from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    """Stable, language-agnostic error kinds returned to callers."""
    VALIDATION = "validation_failed"
    RATE_LIMITED = "rate_limited"
    SUBMISSION_FAILED = "submission_failed"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"


@dataclass(frozen=True)
class FieldError:
    field: str
    code: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "code": self.code, "message": self.message}


class IntakeError(Exception):
    kind: ErrorKind = ErrorKind.SUBMISSION_FAILED


class ValidationFailed(IntakeError):
    kind = ErrorKind.VALIDATION

    def __init__(self, errors: List[FieldError]):
        super().__init__(f"{len(errors)} invalid field(s)")
        self.errors = errors


class RateLimitExceeded(IntakeError):
    kind = ErrorKind.RATE_LIMITED


class StorageError(IntakeError):
    """The primary record could not be written."""
    kind = ErrorKind.SUBMISSION_FAILED


class SecondaryWriteFailure(IntakeError):
    """A follow-up write failed after the primary record was stored.

    Never surfaced to the submitter; logged and published for operators.
    """
    kind = ErrorKind.SUBMISSION_FAILED

    def __init__(self, step: str, lead_id: Optional[str], detail: str = ""):
        super().__init__(f"{step} failed for lead {lead_id}: {detail}")
        self.step = step
        self.lead_id = lead_id
        self.detail = detail


class NotFound(IntakeError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransition(IntakeError):
    kind = ErrorKind.INVALID_TRANSITION
