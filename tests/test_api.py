"""
Tests for the REST API.

Covers:
- Pipeline endpoints (detection -> claims -> audit)
- Corpus query endpoints and claim views
- Error envelope and status codes
- Health checks and response headers
"""
import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from vigil.api.main import app
from vigil.api.deps import get_audit_service, get_db, get_registry

from conftest import FakeAuditClient, verdict_json


# ============================================
# Test Fixtures
# ============================================

@pytest.fixture
def audit_client():
    return FakeAuditClient(verdict_json("true", 0.9))


@pytest.fixture
def api(legal_db, seeded_corpus, registry, audit_client):
    """Test client wired to a seeded SQLite database and a fake audit service."""
    app.dependency_overrides[get_db] = lambda: legal_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_audit_service] = lambda: audit_client

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def broken_db():
    """Database whose every session fails to connect."""
    mock = MagicMock()
    mock.get_session.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    return mock


@pytest.fixture
def api_without_db(broken_db, registry, audit_client):
    app.dependency_overrides[get_db] = lambda: broken_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_audit_service] = lambda: audit_client

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


def detect(api, sample_email):
    return api.post("/detection", json=sample_email)


# ============================================
# Pipeline
# ============================================

class TestPipeline:
    """Test detection, claim building and audit over HTTP."""

    def test_detection(self, api, sample_email):
        response = detect(api, sample_email)

        assert response.status_code == 200
        data = response.json()
        assert data["text_id"] == "email-001"
        assert data["summary"]["exact_citations"] == 2
        assert data["summary"]["resolved"] == 2
        assert data["summary"]["detected_domains"] == ["formation", "justice"]
        assert data["warnings"] == []

    def test_detection_warns_on_unresolved(self, api):
        response = api.post("/detection", json={"text_id": "t-z", "body": "Selon l'art. 12 ZZZ."})
        assert response.status_code == 200
        assert response.json()["summary"]["unresolved"] == 1
        assert "art. 12 ZZZ" in response.json()["warnings"][0]

    def test_build_claims(self, api, sample_email):
        detect(api, sample_email)

        response = api.post("/claims/build", json={
            "text_id": "email-001",
            "analysis_result": {
                "deadlines": [{"days": 45, "description": "Délai de réponse"}],
                "assertions": ["Le directeur doit répondre sous dix jours."],
            },
        })

        assert response.status_code == 200
        data = response.json()
        assert data["claims_built"] == 2
        assert data["claims_blocked"] == 2
        assert len(data["claim_ids"]) == 2
        assert data["summary_by_type"]["legal_assertion"] == 2

    def test_audit_and_reports(self, api, sample_email, audit_client):
        detect(api, sample_email)
        claim_ids = api.post("/claims/build", json={"text_id": "email-001"}).json()["claim_ids"]

        response = api.post("/audit", json={"text_id": "email-001"})

        assert response.status_code == 200
        data = response.json()
        assert data["verified_count"] == 2
        assert data["summary"]["true"] == 2
        assert len(audit_client.queries) == 2

        reports = api.get(f"/audit/claims/{claim_ids[0]}/reports")
        assert reports.status_code == 200
        assert reports.json()[0]["verdict"] == "true"
        assert reports.json()[0]["severity"] == "info"

    def test_refutation_alert(self, api, sample_email, audit_client):
        audit_client.content = verdict_json("false", 0.9, diff_found={"claimed": "a", "official": "b"})
        detect(api, sample_email)
        api.post("/claims/build", json={"text_id": "email-001"})

        api.post("/audit", json={"text_id": "email-001"})
        alerts = api.get("/audit/alerts", params={"text_id": "email-001"})

        assert alerts.status_code == 200
        assert len(alerts.json()) == 2
        assert {a["severity"] for a in alerts.json()} == {"critical"}

    def test_refuted_claim_view_is_blocked(self, api, sample_email, audit_client):
        audit_client.content = verdict_json("false", 0.9)
        detect(api, sample_email)
        claim_id = api.post("/claims/build", json={"text_id": "email-001"}).json()["claim_ids"][0]

        assert api.get(f"/claims/{claim_id}").json()["display_blocked"] is False
        api.post("/audit", json={"claim_ids": [claim_id]})

        response = api.get(f"/claims/{claim_id}")
        assert response.status_code == 200
        assert response.json()["latest_verdict"] == "false"
        assert response.json()["display_blocked"] is True

        audit_client.content = verdict_json("true", 0.9)
        api.post("/audit", json={"claim_ids": [claim_id]})
        assert api.get(f"/claims/{claim_id}").json()["display_blocked"] is False

    def test_list_claims_by_text(self, api, sample_email):
        detect(api, sample_email)
        claim_ids = api.post("/claims/build", json={"text_id": "email-001"}).json()["claim_ids"]

        response = api.get("/claims", params={"text_id": "email-001"})

        assert response.status_code == 200
        assert sorted(c["claim_id"] for c in response.json()) == sorted(claim_ids)
        assert all(c["latest_verdict"] is None for c in response.json())

    def test_audit_reports_skipped_ids(self, api, sample_email, monkeypatch):
        monkeypatch.setenv("AUDIT_BATCH_SIZE", "1")
        detect(api, sample_email)
        claim_ids = api.post("/claims/build", json={"text_id": "email-001"}).json()["claim_ids"]

        data = api.post("/audit", json={"claim_ids": claim_ids}).json()

        assert data["verified_count"] == 1
        assert data["skipped_claim_ids"] == claim_ids[1:]


# ============================================
# Corpus
# ============================================

class TestCorpusEndpoints:
    """Test read-only corpus queries."""

    def test_search_by_domain(self, api):
        response = api.get("/corpus/instruments", params={"domain": "famille"})
        assert response.status_code == 200
        assert {i["instrument_uid"] for i in response.json()} == {"CC", "LProMin", "LVPAE"}

    def test_search_all_statuses(self, api):
        response = api.get("/corpus/instruments", params={"q": "procédure", "status": "all"})
        assert {i["instrument_uid"] for i in response.json()} == {"LPA-VD", "LJPA"}

    def test_instrument_detail(self, api):
        response = api.get("/corpus/instruments/LEO")
        assert response.status_code == 200
        assert response.json()["unit_counts"] == {"article": 8}

    def test_unknown_instrument(self, api):
        response = api.get("/corpus/instruments/NOPE")
        assert response.status_code == 404
        assert "NOPE" in response.json()["detail"]

    def test_get_unit(self, api):
        response = api.get("/corpus/instruments/LPA-VD/units", params={"cite_key": "art. 95"})
        assert response.status_code == 200
        data = response.json()
        assert "trente jours" in data["content_text"]
        assert len(data["hash_sha256"]) == 64

    def test_get_unit_before_entry_into_force(self, api):
        response = api.get(
            "/corpus/instruments/LPA-VD/units",
            params={"cite_key": "art. 95", "as_of": "2000-01-01"},
        )
        assert response.status_code == 404

    def test_status_with_replacement(self, api):
        response = api.get("/corpus/instruments/LJPA/status")
        assert response.status_code == 200
        data = response.json()
        assert data["in_force"] is False
        assert data["replaced_by"]["instrument_uid"] == "LPA-VD"

    def test_search_units(self, api):
        response = api.get("/corpus/units/search", params={"q": "aide sociale"})
        assert response.status_code == 200
        assert {u["instrument_uid"] for u in response.json()} == {"LASV"}


# ============================================
# Errors
# ============================================

class TestErrorEnvelope:
    """Test status codes and the error envelope."""

    def test_validation_error(self, api):
        response = api.post("/detection", json={"text_id": "x"})
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert "body" in response.json()["detail"]

    def test_build_without_selector(self, api):
        response = api.post("/claims/build", json={})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_build_unknown_text(self, api):
        response = api.post("/claims/build", json={"text_id": "email-404"})
        assert response.status_code == 404
        assert response.json() == {
            "error": "Not Found",
            "detail": "Unknown text email-404",
            "code": "REFERENCE_NOT_FOUND",
        }

    def test_audit_without_selector(self, api):
        response = api.post("/audit", json={})
        assert response.status_code == 400

    def test_audit_unknown_text(self, api):
        response = api.post("/audit", json={"text_id": "no-such-text"})
        assert response.status_code == 404
        assert response.json()["code"] == "REFERENCE_NOT_FOUND"
        assert response.json()["detail"] == "Unknown text no-such-text"

    def test_audit_unknown_claim(self, api):
        response = api.post("/audit", json={"claim_ids": ["missing"]})
        assert response.status_code == 404
        assert response.json()["code"] == "REFERENCE_NOT_FOUND"

    def test_unknown_claim_view(self, api):
        assert api.get("/claims/missing").status_code == 404

    def test_list_claims_without_selector(self, api):
        response = api.get("/claims")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_unknown_claim_reports(self, api):
        response = api.get("/audit/claims/missing/reports")
        assert response.status_code == 404

    def test_corpus_unavailable(self, api_without_db):
        response = api_without_db.post("/detection", json={"text_id": "t", "body": "Selon l'art. 17 LEO."})

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json()["code"] == "RESOLUTION_UNAVAILABLE"
        assert response.json()["retryable"] is True


# ============================================
# Health & Headers
# ============================================

class TestHealth:
    """Test health checks and middleware headers."""

    def test_root(self, api):
        assert api.get("/").json()["name"] == "VIGIL API"

    def test_liveness(self, api):
        assert api.get("/health/live").json() == {"status": "alive"}

    def test_health(self, api):
        data = api.get("/health").json()
        assert data["status"] == "healthy"
        assert data["services"]["audit_service"] == "configured (fake-sonar)"

    def test_readiness(self, api):
        assert api.get("/health/ready").status_code == 200

    def test_readiness_without_database(self, api_without_db):
        response = api_without_db.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "not ready"

    def test_detailed_degraded_without_database(self, api_without_db):
        assert api_without_db.get("/health/detailed").json()["status"] == "degraded"

    def test_headers(self, api):
        response = api.get("/health/live", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "X-Process-Time-Ms" in response.headers
