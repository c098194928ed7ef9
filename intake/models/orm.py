# intake/models/orm.py
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    JSON,
    Index,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from intake.core.db import Base
from intake.models.types import (
    ConsentType,
    InvestorType,
    Language,
    LeadStatus,
    LeadType,
    RequestStatus,
    RequestType,
    VerificationStatus,
    VerificationType,
    check_in,
)


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Leads ----------
class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # Only set when the submitter had a session; never taken from the form
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    lead_type: Mapped[str] = mapped_column(String(16))
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    language: Mapped[str] = mapped_column(String(2), default="it")
    # admin-controlled
    status: Mapped[str] = mapped_column(String(16), default="new")
    # provenance tag, e.g. "investor_form", "waitlist_student"
    source: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    # Relationships
    investor_profile: Mapped[Optional["InvestorProfile"]] = relationship(
        "InvestorProfile", back_populates="lead", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )
    student_request: Mapped[Optional["StudentRequest"]] = relationship(
        "StudentRequest", back_populates="lead", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )
    tourist_request: Mapped[Optional["TouristRequest"]] = relationship(
        "TouristRequest", back_populates="lead", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )
    verifications: Mapped[list["Verification"]] = relationship(
        "Verification", back_populates="lead",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(check_in("lead_type", LeadType), name="chk_leads_type"),
        CheckConstraint(check_in("status", LeadStatus), name="chk_leads_status"),
        CheckConstraint(check_in("language", Language), name="chk_leads_language"),
        Index("ix_leads_email_type", "email", "lead_type"),
        Index("ix_leads_type_status", "lead_type", "status"),
    )


# ---------- Investor profile (1:1 with investor leads) ----------
class InvestorProfile(Base):
    __tablename__ = "investor_profiles"

    lead_id: Mapped[str] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), primary_key=True
    )
    country: Mapped[str] = mapped_column(String(100))
    investor_type: Mapped[str] = mapped_column(String(8))
    budget_range: Mapped[str] = mapped_column(String(64))
    risk_tolerance: Mapped[str] = mapped_column(String(64))
    timeframe: Mapped[str] = mapped_column(String(64))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # weak reference, lookup only
    property_interest_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    lead: Mapped[Lead] = relationship("Lead", back_populates="investor_profile")

    __table_args__ = (
        CheckConstraint(check_in("investor_type", InvestorType), name="chk_investor_profiles_type"),
    )


# ---------- Student request (1:1 with student leads) ----------
class StudentRequest(Base):
    __tablename__ = "student_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    lead_id: Mapped[str] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), unique=True, index=True
    )
    # weak reference to a listing, not re-validated on write
    listing_id: Mapped[str] = mapped_column(String(36), index=True)
    request_type: Mapped[str] = mapped_column(String(16))
    university: Mapped[str] = mapped_column(String(200))
    program: Mapped[str] = mapped_column(String(200))
    move_in_date: Mapped[date] = mapped_column(Date)
    budget: Mapped[float] = mapped_column(Float)
    guarantor: Mapped[bool] = mapped_column(Boolean, default=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preferred_dates: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    lead: Mapped[Lead] = relationship("Lead", back_populates="student_request")

    __table_args__ = (
        CheckConstraint(check_in("request_type", RequestType), name="chk_student_requests_type"),
        CheckConstraint(check_in("status", RequestStatus), name="chk_student_requests_status"),
        CheckConstraint("budget > 0", name="chk_student_requests_budget"),
    )


# ---------- Tourist request (1:1 with tourist leads) ----------
class TouristRequest(Base):
    __tablename__ = "tourist_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    lead_id: Mapped[str] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), unique=True, index=True
    )
    listing_id: Mapped[str] = mapped_column(String(36), index=True)
    guests: Mapped[int] = mapped_column(Integer)
    date_from: Mapped[date] = mapped_column(Date)
    date_to: Mapped[date] = mapped_column(Date)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    lead: Mapped[Lead] = relationship("Lead", back_populates="tourist_request")

    __table_args__ = (
        CheckConstraint("guests BETWEEN 1 AND 20", name="chk_tourist_requests_guests"),
        CheckConstraint(check_in("status", RequestStatus), name="chk_tourist_requests_status"),
    )


# ---------- Verifications ----------
class Verification(Base):
    __tablename__ = "verifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # many-to-one: re-submission after rejection is allowed
    lead_id: Mapped[str] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), index=True
    )
    verification_type: Mapped[str] = mapped_column(String(16))

    # Personal data
    full_name: Mapped[str] = mapped_column(String(200))
    dob: Mapped[date] = mapped_column(Date)
    nationality: Mapped[str] = mapped_column(String(100))
    address_line: Mapped[str] = mapped_column(String(300), default="")
    city: Mapped[str] = mapped_column(String(100), default="")
    postal_code: Mapped[str] = mapped_column(String(20), default="")
    country: Mapped[str] = mapped_column(String(100), default="")

    # Identity document + stored object paths
    id_doc_type: Mapped[str] = mapped_column(String(32))
    id_doc_number: Mapped[str] = mapped_column(String(100))
    id_doc_files: Mapped[list] = mapped_column(JSON, default=list)
    proof_of_address_files: Mapped[list] = mapped_column(JSON, default=list)

    # Consent snapshot
    consent_privacy: Mapped[bool] = mapped_column(Boolean, default=True)
    consent_marketing: Mapped[bool] = mapped_column(Boolean, default=False)
    consent_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    # Review workflow
    status: Mapped[str] = mapped_column(String(16), default="submitted")
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )

    lead: Mapped[Lead] = relationship("Lead", back_populates="verifications")

    __table_args__ = (
        CheckConstraint(check_in("verification_type", VerificationType), name="chk_verifications_type"),
        CheckConstraint(check_in("status", VerificationStatus), name="chk_verifications_status"),
        Index("ix_verifications_status_created", "status", "created_at"),
    )


# ---------- Consent logs (append-only) ----------
class ConsentLog(Base):
    __tablename__ = "consent_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    lead_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("leads.id", ondelete="SET NULL"), nullable=True, index=True
    )
    email: Mapped[str] = mapped_column(String(255), index=True)
    consent_type: Mapped[str] = mapped_column(String(16))
    version: Mapped[str] = mapped_column(String(16))
    language: Mapped[str] = mapped_column(String(2))
    # one-way digests only, raw values are never stored
    ip_hash: Mapped[str] = mapped_column(String(64))
    user_agent_hash: Mapped[str] = mapped_column(String(64))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        CheckConstraint(check_in("consent_type", ConsentType), name="chk_consent_logs_type"),
        CheckConstraint(check_in("language", Language), name="chk_consent_logs_language"),
    )
