import os

# keep the app's own engine off the developer database
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from intake.api import deps
from intake.auth.security import create_token
from intake.core.db import Base, build_engine, get_db
from intake.main import app
from intake.services import event_bus
from intake.services.bootstrap_db import create_all
from intake.services.consent import ClientMeta
from intake.services.document_store import LocalDocumentStore
from intake.services.rate_limiter import MemoryRateLimitStore, RateLimiter


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clean_events():
    event_bus.reset()
    yield
    event_bus.reset()


@pytest.fixture
def limiter():
    return RateLimiter(MemoryRateLimitStore(), window=60, limit=1000)


@pytest.fixture
def store(tmp_path):
    return LocalDocumentStore(root=str(tmp_path / "docs"), base_url="http://testserver")


@pytest.fixture
def client_meta():
    return ClientMeta(ip="203.0.113.7", user_agent="pytest-agent/1.0")


@pytest.fixture
def client(db, limiter, store):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[deps.rate_limiter] = lambda: limiter
    app.dependency_overrides[deps.document_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def bearer(sub: str, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {create_token({'sub': sub, 'role': role})}"}


@pytest.fixture
def admin_headers():
    return bearer("admin-1", role="admin")


@pytest.fixture
def user_headers():
    return bearer("user-1")


@pytest.fixture
def fail_commit(db, monkeypatch):
    """Make the n-th commit on `db` raise; other commits go through."""
    def arm(n: int, exc: Exception):
        real = db.commit
        calls = {"n": 0}

        def commit():
            calls["n"] += 1
            if calls["n"] == n:
                raise exc
            return real()

        monkeypatch.setattr(db, "commit", commit)
        return calls
    return arm


# ---- Payloads ---------------------------------------------------------------

LISTING_ID = "6f1c3a52-2f0e-4a55-9a7d-0c1a3c7f9b11"


@pytest.fixture
def waitlist_payload():
    return {
        "name": "Giulia Bianchi",
        "email": "Giulia@Example.com",
        "language": "it",
        "interest": "student",
    }


@pytest.fixture
def investor_payload():
    return {
        "name": "Marco Rossi",
        "email": "marco@example.com",
        "phone": "+39 333 1234567",
        "language": "it",
        "country": "Italy",
        "investor_type": "retail",
        "budget_range": "50k-100k",
        "risk_tolerance": "medium",
        "timeframe": "6-12 months",
        "notes": "",
        "consent_privacy": True,
        "consent_marketing": True,
    }


@pytest.fixture
def student_payload():
    return {
        "name": "Anna Verdi",
        "email": "anna@example.com",
        "language": "en",
        "listing_id": LISTING_ID,
        "request_type": "viewing",
        "university": "Politecnico di Milano",
        "program": "Architecture",
        "move_in_date": "2026-09-01",
        "budget": 650,
        "guarantor": True,
        "preferred_dates": ["2026-08-10", "2026-08-12"],
        "consent_privacy": True,
    }


@pytest.fixture
def tourist_payload():
    return {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "language": "en",
        "listing_id": LISTING_ID,
        "guests": 2,
        "date_from": "2026-07-01",
        "date_to": "2026-07-08",
        "message": "Late arrival",
        "consent_privacy": True,
        "consent_marketing": False,
    }


@pytest.fixture
def verification_payload():
    def make(lead_id: str, verification_type: str = "student", **overrides):
        data = {
            "lead_id": lead_id,
            "verification_type": verification_type,
            "full_name": "Anna Verdi",
            "dob": "2003-04-12",
            "nationality": "Italian",
            "id_doc_type": "passport",
            "id_doc_number": "YA1234567",
            "language": "en",
            "consent_privacy": True,
            "consent_marketing": False,
        }
        if verification_type == "investor":
            data.update(address_line="Via Roma 1", city="Milano", postal_code="20100", country="Italy")
        data.update(overrides)
        return data
    return make
