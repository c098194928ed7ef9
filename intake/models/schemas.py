# intake/models/schemas.py
from datetime import date, datetime
from typing import AbstractSet, Any, Literal, List, Mapping, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from intake.models.types import (
    InvestorType,
    Language,
    LeadStatus,
    LeadType,
    RequestStatus,
    RequestType,
    ReviewDecision,
    VerificationStatus,
    VerificationType,
    WaitlistInterest,
)

EMAIL_PATTERN = r"^[\w\.\+-]+@[\w\.-]+\.\w+$"  # Basic email validation


# ---------- Submission schemas ----------
CrossFieldErrors = List[Tuple[str, str, str]]


def _blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def _as_date(v: Any) -> Optional[date]:
    if isinstance(v, date):
        return v
    try:
        return date.fromisoformat(v)
    except (TypeError, ValueError):
        return None


class SubmissionBase(BaseModel):
    """Fields shared by every public lead form."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=2, max_length=100)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    language: Language

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.lower()

    @classmethod
    def cross_field_errors(cls, data: Mapping[str, Any], skip: AbstractSet[str] = frozenset()) -> CrossFieldErrors:
        """
        (field, code, message) triples for rules spanning several fields.

        `data` may be a validated dump or the raw payload of a submission that
        already failed field checks; fields in `skip` failed those checks and
        are not looked at again.
        """
        return []


class ConsentMixin(BaseModel):
    # must be literally true, never defaulted
    consent_privacy: Literal[True] = Field(...)
    consent_marketing: bool = False


class ContactMixin(BaseModel):
    phone: Optional[str] = Field(None, max_length=30)

    @field_validator("phone", "notes", "message", mode="before", check_fields=False)
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class WaitlistIn(SubmissionBase):
    # no consent checkboxes on this form; privacy is logged for every signup
    interest: WaitlistInterest


class InvestorInterestIn(ContactMixin, ConsentMixin, SubmissionBase):
    country: str = Field(..., min_length=2, max_length=100)
    investor_type: InvestorType
    budget_range: str = Field(..., min_length=1, max_length=64)
    risk_tolerance: str = Field(..., min_length=1, max_length=64)
    timeframe: str = Field(..., min_length=1, max_length=64)
    notes: Optional[str] = Field(None, max_length=1000)
    property_interest_id: Optional[UUID] = None


class StudentRequestIn(ContactMixin, ConsentMixin, SubmissionBase):
    listing_id: UUID
    request_type: RequestType
    university: str = Field(..., min_length=2, max_length=200)
    program: str = Field(..., min_length=2, max_length=200)
    move_in_date: date
    budget: float = Field(..., gt=0, allow_inf_nan=False)
    guarantor: bool
    message: Optional[str] = Field(None, max_length=1000)
    preferred_dates: List[date] = Field(default_factory=list, max_length=5)


class TouristRequestIn(ContactMixin, ConsentMixin, SubmissionBase):
    listing_id: UUID
    guests: int = Field(..., ge=1, le=20)
    date_from: date
    date_to: date
    message: Optional[str] = Field(None, max_length=1000)

    @classmethod
    def cross_field_errors(cls, data: Mapping[str, Any], skip: AbstractSet[str] = frozenset()) -> CrossFieldErrors:
        if "date_from" in skip or "date_to" in skip:
            return []
        start, end = _as_date(data.get("date_from")), _as_date(data.get("date_to"))
        if start and end and end < start:
            return [("date_to", "date_order", "date_to must not precede date_from")]
        return []


INVESTOR_ADDRESS_FIELDS = ("address_line", "city", "postal_code", "country")


class VerificationIn(ConsentMixin):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    lead_id: UUID
    verification_type: VerificationType
    full_name: str = Field(..., min_length=2, max_length=200)
    dob: date
    nationality: str = Field(..., min_length=2, max_length=100)
    # required for investors only
    address_line: str = Field("", max_length=300)
    city: str = Field("", max_length=100)
    postal_code: str = Field("", max_length=20)
    country: str = Field("", max_length=100)
    id_doc_type: str = Field(..., min_length=1, max_length=32)
    id_doc_number: str = Field(..., min_length=1, max_length=100)
    language: Language

    @classmethod
    def cross_field_errors(cls, data: Mapping[str, Any], skip: AbstractSet[str] = frozenset()) -> CrossFieldErrors:
        if "verification_type" in skip or str(data.get("verification_type") or "").strip() != "investor":
            return []
        return [
            (f, "required_for_investor", f"{f} is required for investor verification")
            for f in INVESTOR_ADDRESS_FIELDS
            if f not in skip and _blank(data.get(f))
        ]


# ---------- Results ----------
class FieldErrorOut(BaseModel):
    field: str
    code: str
    message: str


class SubmissionResult(BaseModel):
    """Language-agnostic outcome; the UI maps `error` kinds to localized text."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    lead_id: Optional[str] = Field(None, alias="leadId")
    request_id: Optional[str] = Field(None, alias="requestId")
    verification_id: Optional[str] = Field(None, alias="verificationId")
    error: Optional[str] = None
    errors: List[FieldErrorOut] = Field(default_factory=list)


# ---------- Admin ----------
class LeadStatusUpdate(BaseModel):
    status: LeadStatus


class ReviewIn(BaseModel):
    decision: ReviewDecision
    notes: Optional[str] = Field(None, max_length=2000)


class LeadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: Optional[str] = None
    lead_type: LeadType
    name: str
    email: str
    phone: Optional[str] = None
    language: Language
    status: LeadStatus
    source: Optional[str] = None
    created_at: datetime


class LeadPage(BaseModel):
    items: List[LeadOut]
    total: int
    page: int
    page_size: int


class StudentRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    lead_id: str
    listing_id: str
    request_type: RequestType
    university: str
    program: str
    move_in_date: date
    budget: float
    guarantor: bool
    message: Optional[str] = None
    preferred_dates: List[str] = Field(default_factory=list)
    status: RequestStatus
    created_at: datetime


class TouristRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    lead_id: str
    listing_id: str
    guests: int
    date_from: date
    date_to: date
    message: Optional[str] = None
    status: RequestStatus
    created_at: datetime


class VerificationOut(BaseModel):
    """Verification summary; personal identifiers beyond the name stay server-side."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    lead_id: str
    verification_type: VerificationType
    full_name: str
    nationality: str
    id_doc_type: str
    id_doc_files: List[str] = Field(default_factory=list)
    proof_of_address_files: List[str] = Field(default_factory=list)
    consent_marketing: bool
    status: VerificationStatus
    admin_notes: Optional[str] = None
    created_at: datetime
    lead: Optional[LeadOut] = None


class DocumentLink(BaseModel):
    bucket: str
    path: str
    url: str


class DashboardOut(BaseModel):
    leads: List[LeadOut]
    verifications: List[VerificationOut]
    student_requests: List[StudentRequestOut]
    tourist_requests: List[TouristRequestOut]
