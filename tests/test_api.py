"""HTTP surface, driven through TestClient against the in-memory engine."""
import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_engine
from api.main import app


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    # no context manager: the lifespan would start worker threads and build the real engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["store"]["backend"] == "InMemoryStore"
    assert body["payment_thresholds_cents"]["basic"] == 50_000


def test_access_check(client):
    response = client.post("/access/check", json={"ip": "36.110.0.1", "type": "content"})
    assert response.status_code == 200
    assert response.json()["allowed"] is False
    assert response.json()["recommended_action"] == "block"

    assert client.post("/access/check", json={"ip": "8.8.8.8", "type": "banner"}).status_code == 422


def test_restriction_lifecycle(client):
    created = client.post("/restrictions", json={
        "type": "content", "countries": ["ca"], "reason": "Licensing", "created_by": "ops", "target_id": "film-42",
    })
    assert created.status_code == 201
    restriction_id = created.json()["id"]

    listed = client.get("/restrictions", params={"type": "content", "target_id": "film-42"})
    assert [r["id"] for r in listed.json()] == [restriction_id]
    assert listed.json()[0]["blocked_countries"] == ["CA"]

    denied = client.post("/access/check", json={"ip": "24.48.0.1", "type": "content", "target_id": "film-42"})
    assert denied.json()["reason"] == "Access blocked from your region: Licensing"

    deleted = client.delete(f"/restrictions/{restriction_id}", params={"actor": "ops"})
    assert deleted.status_code == 200
    assert deleted.json()["is_active"] is False
    assert client.delete("/restrictions/geo_missing", params={"actor": "ops"}).status_code == 404


def test_invalid_restriction_is_422(client):
    response = client.post("/restrictions", json={
        "type": "content", "countries": ["Canada"], "reason": "r", "created_by": "ops",
    })
    assert response.status_code == 422
    assert "Invalid ISO-3166" in response.json()["detail"]


def test_compliance_requirements_and_check(client):
    assert client.get("/compliance/it/requirements").json()["country"] == "EU"
    assert client.get("/compliance/JP/requirements").status_code == 404

    check = client.post("/compliance/check", json={"user_id": "u1", "country_code": "US"})
    assert check.json()["actions"] == ["age_verification"]

    assert client.post("/compliance/age-verifications", json={"user_id": "u1"}).status_code == 204
    assert client.post("/compliance/check", json={"user_id": "u1", "country_code": "US"}).json()["compliant"]

    assert client.post("/compliance/consents", json={"user_id": "u1", "country_code": "DE"}).status_code == 204
    assert client.post("/compliance/check", json={"user_id": "u1", "country_code": "DE"}).json()["compliant"]


def test_kyc_flow(client, engine, personal_info, passport):
    started = client.post("/kyc/verifications", json={
        "user_id": "ada", "type": "enhanced", "personal_info": personal_info, "documents": passport,
    })
    assert started.status_code == 201
    verification_id = started.json()["verification_id"]

    processed = client.post(f"/kyc/verifications/{verification_id}/process")
    assert processed.json()["status"] == "approved"
    assert client.get(f"/kyc/verifications/{verification_id}").json()["risk_score"] == 95
    assert client.get("/kyc/users/ada/level").json() == {"user_id": "ada", "verification_level": "enhanced"}

    review = client.post(f"/kyc/verifications/{verification_id}/review", json={"approved": False, "reviewer": "r"})
    assert review.status_code == 422


def test_kyc_failures(client, personal_info):
    rejected = client.post("/kyc/verifications", json={
        "user_id": "ada", "type": "basic", "personal_info": personal_info, "documents": [],
    })
    assert rejected.status_code == 422
    assert rejected.json() == {"success": False, "verification_id": None, "error": "No documents provided"}

    assert client.get("/kyc/verifications/kyc_missing").status_code == 404
    assert client.post("/kyc/verifications/kyc_missing/process").status_code == 404
    missing_review = client.post("/kyc/verifications/kyc_missing/review", json={"approved": True, "reviewer": "r"})
    assert missing_review.status_code == 404


def test_payment_compliance(client):
    blocked = client.post("/payments/compliance", json={"user_id": "new", "amount": 60_000, "type": "purchase"})
    assert blocked.status_code == 200
    assert blocked.json()["verification_required"] == "basic"
    assert blocked.json()["max_allowed_cents"] == 49_999

    assert client.post("/payments/compliance", json={"user_id": "new", "amount": 0, "type": "purchase"}).status_code == 422


def test_transactions_feed_fraud_check(client):
    for _ in range(11):
        created = client.post("/payments/transactions", json={"user_id": "busy", "amount": 2_000})
        assert created.status_code == 201

    result = client.post("/payments/fraud-check", json={"user_id": "busy", "amount": 2_000, "type": "tip"})
    assert result.json()["flags"] == ["high_velocity"]
    assert result.json()["risk_score"] == 30


def test_root(client):
    assert client.get("/").json()["service"] == "Compliance Decision Engine"
