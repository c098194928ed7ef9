import csv
import io
from unittest import mock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from intake.models.orm import ConsentLog, InvestorProfile, Lead, StudentRequest, TouristRequest
from intake.services import event_bus
from intake.services.errors import NotFound, ValidationFailed
from intake.services.lead_service import CSV_HEADER, LeadWriteService
from intake.services.rate_limiter import MemoryRateLimitStore, RateLimiter


def boom():
    return OperationalError("INSERT", {}, Exception("disk I/O error"))


@pytest.fixture
def service(db, limiter):
    return LeadWriteService(db, limiter)


def count(db, model, *where):
    return db.scalar(select(func.count()).select_from(model).where(*where))


# ---------------- Waitlist ----------------

def test_waitlist_creates_lead_and_privacy_consent(service, db, waitlist_payload, client_meta):
    res = service.submit_waitlist(waitlist_payload, client_meta)
    assert res.success
    assert res.lead_id is None and res.request_id is None

    lead = db.scalars(select(Lead)).one()
    assert lead.lead_type == "waitlist"
    assert lead.source == "waitlist_student"
    assert lead.email == "giulia@example.com"
    assert lead.status == "new"

    consents = db.scalars(select(ConsentLog)).all()
    assert [c.consent_type for c in consents] == ["privacy"]
    assert consents[0].lead_id == lead.id


def test_waitlist_without_consent_fields_logs_privacy_only(service, db, client_meta):
    payload = {"name": "Marco Neri", "email": "marco@example.com", "interest": "investor", "language": "en"}
    res = service.submit_waitlist(payload, client_meta)
    assert res.success
    assert res.errors == []

    lead = db.scalars(select(Lead)).one()
    assert lead.source == "waitlist_investor"
    rows = db.scalars(select(ConsentLog)).all()
    assert [(r.consent_type, r.lead_id, r.email) for r in rows] == [("privacy", lead.id, "marco@example.com")]


def test_waitlist_ignores_marketing_opt_in(service, db, waitlist_payload, client_meta):
    waitlist_payload.update(consent_privacy=True, consent_marketing=True)
    assert service.submit_waitlist(waitlist_payload, client_meta).success
    assert count(db, ConsentLog, ConsentLog.consent_type == "marketing") == 0


def test_waitlist_duplicate_is_silent(service, db, waitlist_payload, client_meta):
    assert service.submit_waitlist(waitlist_payload, client_meta).success
    again = service.submit_waitlist(dict(waitlist_payload, email="giulia@example.com"), client_meta)
    assert again.success
    assert again.error is None
    assert count(db, Lead) == 1
    assert count(db, ConsentLog) == 1


def test_waitlist_duplicate_check_is_per_lead_type(service, db, waitlist_payload, tourist_payload, client_meta):
    tourist_payload["email"] = "giulia@example.com"
    assert service.submit_tourist_request(tourist_payload, client_meta).success
    assert service.submit_waitlist(waitlist_payload, client_meta).success
    assert count(db, Lead) == 2


# ---------------- Typed submissions ----------------

def test_investor_creates_lead_profile_and_both_consents(service, db, investor_payload, client_meta):
    res = service.submit_investor_interest(investor_payload, client_meta, user_id="user-9")
    assert res.success and res.lead_id

    lead = db.get(Lead, res.lead_id)
    assert (lead.lead_type, lead.source, lead.user_id) == ("investor", "investor_form", "user-9")
    profile = db.get(InvestorProfile, res.lead_id)
    assert profile.investor_type == "retail"
    assert profile.notes is None
    assert sorted(c.consent_type for c in db.scalars(select(ConsentLog))) == ["marketing", "privacy"]


def test_student_request_ids_and_source(service, db, student_payload, client_meta):
    res = service.submit_student_request(student_payload, client_meta)
    assert res.success and res.lead_id and res.request_id

    req = db.get(StudentRequest, res.request_id)
    assert req.lead_id == res.lead_id
    assert req.status == "pending"
    assert req.preferred_dates == ["2026-08-10", "2026-08-12"]
    assert db.get(Lead, res.lead_id).source == "student_viewing"


def test_tourist_request_scenario(service, db, tourist_payload, client_meta):
    res = service.submit_tourist_request(tourist_payload, client_meta)
    assert res.success

    lead = db.get(Lead, res.lead_id)
    assert (lead.lead_type, lead.source) == ("tourist", "tourist_request")
    req = db.get(TouristRequest, res.request_id)
    assert req.guests == 2 and req.status == "pending"
    assert [c.consent_type for c in db.scalars(select(ConsentLog))] == ["privacy"]


def test_validation_failure_writes_nothing(service, db, tourist_payload, client_meta):
    tourist_payload["guests"] = 0
    res = service.submit_tourist_request(tourist_payload, client_meta)
    assert not res.success
    assert res.error == "validation_failed"
    assert [e.field for e in res.errors] == ["guests"]
    assert count(db, Lead) == 0
    assert count(db, ConsentLog) == 0


def test_rate_limit_checked_before_validation(db, client_meta):
    limiter = RateLimiter(MemoryRateLimitStore(), window=60, limit=1)
    svc = LeadWriteService(db, limiter)
    assert svc.submit_waitlist({}, client_meta).error == "validation_failed"
    res = svc.submit_waitlist({}, client_meta)
    assert res.error == "rate_limited"
    assert res.errors == []


# ---------------- Failure semantics ----------------

def test_lead_insert_failure_is_submission_failed(service, db, fail_commit, student_payload, client_meta):
    fail_commit(1, boom())
    res = service.submit_student_request(student_payload, client_meta)
    assert not res.success
    assert res.error == "submission_failed"
    assert count(db, Lead) == 0
    assert count(db, ConsentLog) == 0


def test_child_failure_keeps_lead_and_flags_operators(service, db, fail_commit, student_payload, client_meta):
    fail_commit(2, boom())
    res = service.submit_student_request(student_payload, client_meta)
    assert res.success
    assert res.lead_id and res.request_id is None

    assert count(db, StudentRequest) == 0
    # consent still recorded after the child failed
    assert count(db, ConsentLog) == 1
    events = event_bus.collect_since(res.lead_id)
    assert [e["payload"]["step"] for e in events] == ["student_request"]
    assert [l.id for l in service.find_orphaned_leads()] == [res.lead_id]


def test_consent_failure_does_not_fail_submission(service, db, fail_commit, investor_payload, client_meta):
    fail_commit(3, boom())
    res = service.submit_investor_interest(investor_payload, client_meta)
    assert res.success
    assert count(db, InvestorProfile) == 1
    assert count(db, ConsentLog) == 0
    events = event_bus.collect_since("*")
    assert events[-1]["type"] == event_bus.SECONDARY_WRITE_FAILED
    assert events[-1]["payload"]["step"] == "consent"


def test_unexpected_error_is_not_leaked(service, client_meta, waitlist_payload, monkeypatch):
    monkeypatch.setattr(service.db, "scalars", mock.Mock(side_effect=RuntimeError("driver detail")))
    res = service.submit_waitlist(waitlist_payload, client_meta)
    assert res.error == "submission_failed"
    assert "driver detail" not in res.model_dump_json()


# ---------------- Admin ----------------

def test_update_status(service, db, investor_payload, client_meta):
    lead_id = service.submit_investor_interest(investor_payload, client_meta).lead_id
    lead = service.update_status(lead_id, "contacted")
    assert lead.status == "contacted"
    db.expire_all()
    assert db.get(Lead, lead_id).status == "contacted"


def test_update_status_rejects_unknown_values(service, investor_payload, client_meta):
    lead_id = service.submit_investor_interest(investor_payload, client_meta).lead_id
    with pytest.raises(ValidationFailed):
        service.update_status(lead_id, "archived")
    with pytest.raises(NotFound):
        service.update_status("missing", "contacted")


def test_list_leads_filters_and_paginates(service, investor_payload, student_payload, tourist_payload, client_meta):
    service.submit_investor_interest(investor_payload, client_meta)
    service.submit_student_request(student_payload, client_meta)
    service.submit_tourist_request(tourist_payload, client_meta)

    items, total = service.list_leads(page_size=2)
    assert total == 3 and len(items) == 2
    items, total = service.list_leads(page=2, page_size=2)
    assert total == 3 and len(items) == 1

    items, total = service.list_leads(lead_type="student")
    assert total == 1 and items[0].email == "anna@example.com"

    items, total = service.list_leads(search="MARCO")
    assert [l.name for l in items] == ["Marco Rossi"]


def test_export_csv(service, investor_payload, client_meta):
    investor_payload["name"] = 'Marco "Il Capo" Rossi'
    service.submit_investor_interest(investor_payload, client_meta)
    body = service.export_csv()
    assert body.splitlines()[0] == ",".join(f'"{h}"' for h in CSV_HEADER)
    rows = list(csv.reader(io.StringIO(body)))
    assert rows[1][:6] == ['Marco "Il Capo" Rossi', "marco@example.com", "+39 333 1234567", "investor", "new", "it"]


def test_dashboard_only_returns_own_records(service, student_payload, tourist_payload, client_meta):
    mine = service.submit_student_request(student_payload, client_meta, user_id="user-1")
    service.submit_tourist_request(tourist_payload, client_meta, user_id="user-2")

    data = service.dashboard("user-1")
    assert [l.id for l in data["leads"]] == [mine.lead_id]
    assert [r.id for r in data["student_requests"]] == [mine.request_id]
    assert data["tourist_requests"] == []
    assert service.dashboard("nobody") == {
        "leads": [], "verifications": [], "student_requests": [], "tourist_requests": []
    }
