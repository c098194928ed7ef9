# intake/services/validator.py
"""
Schema-based validation of untrusted form input.

`validate()` never raises for bad input: it returns either `Valid(value)`
holding a fully-populated schema instance or `Invalid(errors)` listing every
violated constraint, so callers can never act on a half-validated payload.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Dict, List, Mapping, Sequence, Type, Union

import pydantic
from pydantic import BaseModel

from intake.core.config import MAX_UPLOAD_BYTES
from intake.models.schemas import (
    InvestorInterestIn,
    StudentRequestIn,
    TouristRequestIn,
    VerificationIn,
    WaitlistIn,
)
from intake.services.errors import FieldError

logger = logging.getLogger("intake.validator")

SCHEMAS: Dict[str, Type[BaseModel]] = {
    "waitlist": WaitlistIn,
    "investor-interest": InvestorInterestIn,
    "student-request": StudentRequestIn,
    "tourist-request": TouristRequestIn,
    "verification": VerificationIn,
}

ALLOWED_CONTENT_PREFIXES = ("image/",)
ALLOWED_CONTENT_TYPES = {"application/pdf"}


@dataclass(frozen=True)
class Valid:
    value: Any
    ok: bool = True


@dataclass(frozen=True)
class Invalid:
    errors: List[FieldError] = field(default_factory=list)
    ok: bool = False


ValidationResult = Union[Valid, Invalid]


def _loc(loc: Sequence[Any]) -> str:
    return ".".join(str(p) for p in loc) or "__root__"


def _from_pydantic(exc: pydantic.ValidationError) -> List[FieldError]:
    return [
        FieldError(field=_loc(e.get("loc", ())), code=e.get("type", "invalid"), message=e.get("msg", ""))
        for e in exc.errors()
    ]


def _cross(model: Type[BaseModel], data: Mapping[str, Any], failed: AbstractSet[str] = frozenset()) -> List[FieldError]:
    return [FieldError(f, c, m) for f, c, m in model.cross_field_errors(data, failed)]


def validate(schema: str, payload: Mapping[str, Any] | None) -> ValidationResult:
    model = SCHEMAS.get(schema)
    if model is None:
        raise KeyError(f"unknown schema: {schema}")

    if not isinstance(payload, Mapping):
        return Invalid([FieldError("__root__", "dict_type", "Input should be an object")])

    data = dict(payload)
    try:
        value = model.model_validate(data)
    except pydantic.ValidationError as exc:
        errors = _from_pydantic(exc)
        # multi-field rules still run over whatever parsed
        failed = {e.field.split(".", 1)[0] for e in errors}
        errors += _cross(model, data, failed)
        logger.debug("validate schema=%s errors=%d", schema, len(errors))
        return Invalid(errors)

    cross = _cross(model, value.model_dump())
    if cross:
        return Invalid(cross)
    return Valid(value)


def validate_files(field_name: str, files: Sequence[Any], *, max_bytes: int = MAX_UPLOAD_BYTES) -> List[FieldError]:
    """Size and type checks for uploaded documents (images or PDF)."""
    errors: List[FieldError] = []
    for i, f in enumerate(files):
        loc = f"{field_name}.{i}"
        ctype = (f.content_type or "").lower()
        if not (ctype in ALLOWED_CONTENT_TYPES or ctype.startswith(ALLOWED_CONTENT_PREFIXES)):
            errors.append(FieldError(loc, "file_type", "Only images or PDF documents are accepted"))
        if len(f.data) > max_bytes:
            errors.append(FieldError(loc, "file_too_large", f"File exceeds {max_bytes} bytes"))
        if not f.data:
            errors.append(FieldError(loc, "file_empty", "File is empty"))
    return errors
