import json

from sqlalchemy import func, select

from intake.api import deps
from intake.main import app
from intake.models.orm import Lead, Verification
from intake.services.rate_limiter import MemoryRateLimitStore, RateLimiter


def test_health_ping(client):
    r = client.get("/health/ping")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_tourist_request_end_to_end(client, db, tourist_payload):
    r = client.post("/api/leads/tourist", json=tourist_payload)
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert set(data) >= {"leadId", "requestId"}
    assert "error" not in data

    lead = db.get(Lead, data["leadId"])
    assert lead.source == "tourist_request"


def test_waitlist_returns_no_ids(client, waitlist_payload):
    r = client.post("/api/leads/waitlist", json=waitlist_payload)
    assert r.status_code == 200
    assert r.json() == {"success": True, "errors": []}


def test_waitlist_form_has_no_consent_checkboxes(client, db):
    body = {"name": "Luca Rossi", "email": "luca@example.com", "interest": "tourist", "language": "it"}
    r = client.post("/api/leads/waitlist", json=body)
    assert r.status_code == 200
    assert r.json() == {"success": True, "errors": []}
    assert db.scalar(select(func.count()).select_from(Lead).where(Lead.email == "luca@example.com")) == 1


def test_validation_errors_are_field_level(client, investor_payload):
    investor_payload["email"] = "nope"
    r = client.post("/api/leads/investor", json=investor_payload)
    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "validation_failed"
    assert [e["field"] for e in body["errors"]] == ["email"]


def test_sixth_submission_is_rate_limited(client, db, waitlist_payload):
    strict = RateLimiter(MemoryRateLimitStore(), window=60, limit=5)
    app.dependency_overrides[deps.rate_limiter] = lambda: strict
    headers = {"X-Forwarded-For": "198.51.100.23, 10.0.0.1"}
    codes = []
    for i in range(6):
        payload = dict(waitlist_payload, email=f"user{i}@example.com")
        codes.append(client.post("/api/leads/waitlist", json=payload, headers=headers).status_code)
    assert codes == [200] * 5 + [429]

    r = client.post("/api/leads/waitlist", json=waitlist_payload, headers=headers)
    assert r.json()["error"] == "rate_limited"
    # a different client is unaffected
    other = client.post("/api/leads/waitlist", json=waitlist_payload, headers={"X-Forwarded-For": "192.0.2.1"})
    assert other.status_code == 200
    assert db.scalar(select(func.count()).select_from(Lead)) == 6


def test_session_links_lead_to_user(client, db, student_payload, user_headers):
    r = client.post("/api/leads/student", json=student_payload, headers=user_headers)
    assert r.status_code == 200
    assert db.get(Lead, r.json()["leadId"]).user_id == "user-1"


def test_bad_token_is_treated_as_anonymous(client, db, student_payload):
    r = client.post("/api/leads/student", json=student_payload, headers={"Authorization": "Bearer junk"})
    assert r.status_code == 200
    assert db.get(Lead, r.json()["leadId"]).user_id is None


def test_verification_multipart(client, db, investor_payload, verification_payload):
    lead_id = client.post("/api/leads/investor", json=investor_payload).json()["leadId"]
    r = client.post(
        "/api/verifications",
        data={"payload": json.dumps(verification_payload(lead_id, "investor"))},
        files=[
            ("id_files", ("passport.pdf", b"%PDF-1.7", "application/pdf")),
            ("proof_files", ("bill.png", b"\x89PNG", "image/png")),
        ],
    )
    assert r.status_code == 200, r.text
    vid = r.json()["verificationId"]
    ver = db.get(Verification, vid)
    assert len(ver.id_doc_files) == 1 and len(ver.proof_of_address_files) == 1


def test_verification_bad_json_payload(client):
    r = client.post("/api/verifications", data={"payload": "{not json"})
    assert r.status_code == 422
    assert r.json()["errors"][0]["code"] == "json_invalid"


def test_verification_for_unknown_lead(client, verification_payload):
    r = client.post(
        "/api/verifications",
        data={"payload": json.dumps(verification_payload("0b0c6b3e-5a43-4f7b-9d0e-2f2b7a1c9e10"))},
        files=[("id_files", ("passport.pdf", b"%PDF-1.7", "application/pdf"))],
    )
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_health_db_and_events(client):
    assert client.get("/health/db").json() == {"ok": True}
    body = client.get("/health/events").json()
    assert body == {"ok": True, "total": 0, "leads": 0}
