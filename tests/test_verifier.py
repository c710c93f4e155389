"""
Tests for the audit verifier and the audit client.

Covers:
- Verdict recording and severity mapping
- Critical alerts on refutation
- Per-claim isolation of service failures and timeouts
- Re-verification history
- HTTP client behaviour (mocked requests)
"""
import json
import pytest
import requests
from unittest.mock import MagicMock, patch

from vigil.audit import AuditClient, AuditVerifier, merge_evidence
from vigil.audit.verifier import REFUTATION_ALERT_TITLE, refutation_alert
from vigil.errors import AuditServiceUnavailable, ReferenceNotFound, ResolutionUnavailable

from conftest import FakeAuditClient, verdict_json

LEO_SOURCE = "https://www.rsv.vd.ch/dire-cocoon/rsv_site/doc.fo.html?docId=5400"


@pytest.fixture
def pending_claims(detector, builder, sample_email):
    """Two pending claims: art. 17 LEO and art. 95 LPA-VD."""
    detector.detect(**sample_email)
    return builder.build(text_id=sample_email["text_id"]).claim_ids


def make_verifier(seeded_corpus, legal_db, client, **kwargs):
    return AuditVerifier(seeded_corpus, legal_db, client, **kwargs)


# ============================================
# Verdicts
# ============================================

class TestVerdicts:
    """Test report recording per verdict."""

    def test_confirmed_claims(self, seeded_corpus, legal_db, pending_claims):
        client = FakeAuditClient(verdict_json("true", 0.92, [LEO_SOURCE]))
        batch = make_verifier(seeded_corpus, legal_db, client).verify(text_id="email-001")

        assert batch.verified_count == 2
        assert batch.summary == {"true": 2, "false": 0, "uncertain": 0}
        assert all(r.severity == "info" for r in batch.results)
        assert legal_db.list_alerts(text_id="email-001") == []
        assert all(c["status"] == "verified" for c in legal_db.list_claims(text_id="email-001"))

    def test_refuted_claim_raises_critical_alert(self, seeded_corpus, legal_db, pending_claims):
        diff = {"claimed": "assisté d'un conseil", "official": "assisté d'un conseil de direction", "source": LEO_SOURCE}

        def answer(query):
            if "[LEO art. 17]" in query:
                return verdict_json("false", 0.95, [LEO_SOURCE], diff_found=diff, notes="Texte modifié")
            return verdict_json("true", 0.9)

        batch = make_verifier(seeded_corpus, legal_db, FakeAuditClient(answer)).verify(text_id="email-001")

        refuted = [r for r in batch.results if r.verdict == "false"]
        assert len(refuted) == 1
        assert refuted[0].severity == "error"
        assert refuted[0].diff_summary.startswith('Divergence: "assisté d\'un conseil"')

        alerts = legal_db.list_alerts(text_id="email-001")
        assert len(alerts) == 1
        assert alerts[0]["severity"] == "critical"
        assert alerts[0]["alert_type"] == "verification_failed"
        assert alerts[0]["title"] == REFUTATION_ALERT_TITLE
        assert alerts[0]["claim_id"] == refuted[0].claim_id
        assert alerts[0]["user_id"] == "user-1"
        assert "Divergence" in alerts[0]["description"]

    def test_unparseable_answer_is_uncertain(self, seeded_corpus, legal_db, pending_claims):
        client = FakeAuditClient("Je ne sais pas.")
        batch = make_verifier(seeded_corpus, legal_db, client).verify(text_id="email-001")

        assert batch.summary["uncertain"] == 2
        assert all(r.confidence == 0.3 for r in batch.results)
        assert all(r.severity == "warning" for r in batch.results)
        assert legal_db.list_alerts() == []

    def test_evidence_merges_sources_and_citations(self, seeded_corpus, legal_db, pending_claims):
        client = FakeAuditClient(
            verdict_json("true", 0.9, [LEO_SOURCE, "https://www.vd.ch/ecole"]),
            citations=["https://www.vd.ch/ecole", "https://www.fedlex.admin.ch/a"],
        )
        batch = make_verifier(seeded_corpus, legal_db, client).verify(claim_ids=[pending_claims[0]])

        urls = batch.results[0].evidence_urls
        assert urls[0] == LEO_SOURCE
        assert urls.count("https://www.vd.ch/ecole") == 1
        assert "https://www.fedlex.admin.ch/a" in urls

    def test_report_stores_unit_hashes(self, seeded_corpus, legal_db, pending_claims):
        make_verifier(seeded_corpus, legal_db, FakeAuditClient()).verify(claim_ids=[pending_claims[0]])

        claim = legal_db.get_claim(pending_claims[0])
        units = seeded_corpus.get_units_by_ids(claim["unit_ids"])
        report = legal_db.latest_report(pending_claims[0])
        assert report["unit_hashes"] == [u["hash_sha256"] for u in units]

    def test_query_carries_canonical_content(self, seeded_corpus, legal_db, pending_claims):
        client = FakeAuditClient()
        make_verifier(seeded_corpus, legal_db, client).verify(text_id="email-001")

        joined = "\n".join(client.queries)
        assert "Chaque établissement scolaire est dirigé par un directeur" in joined
        assert seeded_corpus.get_unit("LPA-VD", "art. 95")["hash_sha256"] in joined


# ============================================
# Failure Isolation
# ============================================

class TestFailureIsolation:
    """Test that service failures never abort a batch."""

    def test_transport_error_is_uncertain(self, seeded_corpus, legal_db, pending_claims):
        client = FakeAuditClient(error=AuditServiceUnavailable("connection reset"))
        batch = make_verifier(seeded_corpus, legal_db, client).verify(text_id="email-001")

        assert batch.verified_count == 2
        for result in batch.results:
            assert result.verdict == "uncertain"
            assert result.confidence == 0.0
            assert "connection reset" in result.notes
            # Primary sources still recorded as evidence
            assert result.evidence_urls
        assert legal_db.list_alerts() == []

    def test_one_failure_does_not_stop_others(self, seeded_corpus, legal_db, pending_claims):
        def answer(query):
            if "[LEO art. 17]" in query:
                raise RuntimeError("unexpected")
            return verdict_json("true", 0.9)

        batch = make_verifier(seeded_corpus, legal_db, FakeAuditClient(answer)).verify(text_id="email-001")

        assert batch.summary == {"true": 1, "false": 0, "uncertain": 1}
        failed = [r for r in batch.results if r.verdict == "uncertain"][0]
        assert "RuntimeError" in failed.notes

    def test_timeout_is_uncertain(self, seeded_corpus, legal_db, pending_claims):
        client = FakeAuditClient(delay=3.0)
        verifier = make_verifier(seeded_corpus, legal_db, client, max_workers=2, timeout=0.2)

        batch = verifier.verify(text_id="email-001")

        assert batch.verified_count == 2
        assert all(r.verdict == "uncertain" for r in batch.results)
        assert all("timed out" in r.notes for r in batch.results)

    def test_corpus_outage_makes_no_external_call(self, seeded_corpus, legal_db, pending_claims):
        client = FakeAuditClient()
        verifier = make_verifier(seeded_corpus, legal_db, client)

        with patch.object(seeded_corpus, "get_units_by_ids", side_effect=ResolutionUnavailable("down")):
            with pytest.raises(ResolutionUnavailable):
                verifier.verify(text_id="email-001")

        assert client.queries == []
        assert all(c["status"] == "pending" for c in legal_db.list_claims(text_id="email-001"))


# ============================================
# Selection & History
# ============================================

class TestSelection:
    """Test claim selection and re-verification."""

    def test_selector_required(self, seeded_corpus, legal_db):
        with pytest.raises(ValueError):
            make_verifier(seeded_corpus, legal_db, FakeAuditClient()).verify()

    def test_text_selector_skips_verified(self, seeded_corpus, legal_db, pending_claims):
        verifier = make_verifier(seeded_corpus, legal_db, FakeAuditClient())
        verifier.verify(text_id="email-001")
        assert verifier.verify(text_id="email-001").verified_count == 0

    def test_batch_size_bounds_work(self, seeded_corpus, legal_db, pending_claims):
        verifier = make_verifier(seeded_corpus, legal_db, FakeAuditClient(), batch_size=1)
        assert verifier.verify(text_id="email-001").verified_count == 1
        assert verifier.verify(text_id="email-001").verified_count == 1
        assert verifier.verify(text_id="email-001").verified_count == 0

    def test_reverification_appends_report(self, seeded_corpus, legal_db, pending_claims):
        claim_id = pending_claims[0]
        make_verifier(seeded_corpus, legal_db, FakeAuditClient(verdict_json("true"))).verify(claim_ids=[claim_id])
        make_verifier(seeded_corpus, legal_db, FakeAuditClient(verdict_json("false"))).verify(claim_ids=[claim_id])

        reports = legal_db.list_reports(claim_id)
        assert [r["verdict"] for r in reports] == ["false", "true"]
        assert legal_db.latest_report(claim_id)["verdict"] == "false"

    def test_incident_selector(self, seeded_corpus, legal_db, detector, builder, sample_email):
        legal_db.register_incident("INC-9", user_id="user-1")
        detector.detect(**sample_email, incident_id="INC-9")
        builder.build(incident_id="INC-9")

        batch = make_verifier(seeded_corpus, legal_db, FakeAuditClient()).verify(incident_id="INC-9")
        assert batch.verified_count == 2

    def test_unknown_text_selector(self, seeded_corpus, legal_db):
        client = FakeAuditClient()
        with pytest.raises(ReferenceNotFound, match="no-such-text"):
            make_verifier(seeded_corpus, legal_db, client).verify(text_id="no-such-text")
        assert client.queries == []

    def test_unknown_incident_selector(self, seeded_corpus, legal_db):
        with pytest.raises(ReferenceNotFound, match="INC-404"):
            make_verifier(seeded_corpus, legal_db, FakeAuditClient()).verify(incident_id="INC-404")

    def test_unknown_claim_id_audits_nothing(self, seeded_corpus, legal_db, pending_claims):
        client = FakeAuditClient()
        with pytest.raises(ReferenceNotFound, match="claim-missing"):
            make_verifier(seeded_corpus, legal_db, client).verify(claim_ids=[pending_claims[0], "claim-missing"])

        assert client.queries == []
        assert legal_db.list_reports(pending_claims[0]) == []

    def test_explicit_ids_beyond_batch_are_reported(self, seeded_corpus, legal_db, pending_claims):
        verifier = make_verifier(seeded_corpus, legal_db, FakeAuditClient(), batch_size=1)

        batch = verifier.verify(claim_ids=pending_claims + [pending_claims[0]])

        assert [r.claim_id for r in batch.results] == [pending_claims[0]]
        assert batch.skipped_claim_ids == [pending_claims[1]]
        assert batch.to_dict()["skipped_claim_ids"] == [pending_claims[1]]
        assert legal_db.list_reports(pending_claims[1]) == []

    def test_merge_evidence(self):
        assert merge_evidence(["a", " ", "b"], None, ["b", "c"]) == ["a", "b", "c"]


# ============================================
# Display Blocking
# ============================================

class TestDisplayBlocking:
    """Test that refuted claims are flagged for downstream display."""

    def test_unaudited_claim_not_blocked(self, legal_db, pending_claims):
        view = legal_db.get_claim_view(pending_claims[0])
        assert view["latest_verdict"] is None
        assert view["display_blocked"] is False

    def test_refuted_claim_blocked_until_confirmed(self, seeded_corpus, legal_db, pending_claims):
        claim_id = pending_claims[0]
        make_verifier(seeded_corpus, legal_db, FakeAuditClient(verdict_json("false", 0.9))).verify(claim_ids=[claim_id])

        view = legal_db.get_claim_view(claim_id)
        assert view["latest_verdict"] == "false"
        assert view["display_blocked"] is True
        assert legal_db.get_claim_view(pending_claims[1])["display_blocked"] is False

        make_verifier(seeded_corpus, legal_db, FakeAuditClient(verdict_json("true", 0.95))).verify(claim_ids=[claim_id])

        view = legal_db.get_claim_view(claim_id)
        assert view["latest_verdict"] == "true"
        assert view["latest_confidence"] == 0.95
        assert view["display_blocked"] is False

    def test_views_by_text(self, seeded_corpus, legal_db, pending_claims):
        make_verifier(seeded_corpus, legal_db, FakeAuditClient(verdict_json("false"))).verify(claim_ids=[pending_claims[1]])

        views = legal_db.list_claim_views(text_id="email-001")
        assert [v["claim_id"] for v in views] == [c["claim_id"] for c in legal_db.list_claims(text_id="email-001")]
        assert {v["claim_id"]: v["display_blocked"] for v in views} == {
            pending_claims[0]: False,
            pending_claims[1]: True,
        }

    def test_unknown_claim_view(self, legal_db):
        assert legal_db.get_claim_view("missing") is None

    def test_refutation_alert_fallback_detail(self):
        claim = {"claim_text": "Le délai de recours est de 30 jours."}
        alert = refutation_alert(claim, {"diff_summary": None})
        assert alert["severity"] == "critical"
        assert alert["title"] == REFUTATION_ALERT_TITLE
        assert alert["description"].endswith("Content could not be confirmed against official sources")


# ============================================
# Audit Client
# ============================================

class TestAuditClient:
    """Test the HTTP client with mocked requests."""

    @pytest.fixture
    def client(self):
        return AuditClient(
            api_key="pplx-test",
            base_url="https://api.example.test/",
            allowed_domains=["rsv.vd.ch", "fedlex.admin.ch"],
            timeout=5,
            use_mock=False,
        )

    def test_request_payload(self, client):
        response = MagicMock()
        response.json.return_value = {
            "model": "sonar",
            "choices": [{"message": {"content": verdict_json()}}],
            "citations": ["https://www.rsv.vd.ch/x", None],
        }
        with patch("vigil.audit.client.requests.post", return_value=response) as post:
            result = client.verify("system", "query")

        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        assert url == "https://api.example.test/chat/completions"
        assert payload["search_domain_filter"] == ["rsv.vd.ch", "fedlex.admin.ch"]
        assert payload["messages"][1] == {"role": "user", "content": "query"}
        assert post.call_args.kwargs["timeout"] == 5
        assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer pplx-test"
        assert json.loads(result.content)["verdict"] == "true"
        assert result.citations == ["https://www.rsv.vd.ch/x"]

    @pytest.mark.parametrize("error", [
        requests.exceptions.Timeout("read timeout"),
        requests.exceptions.ConnectionError("refused"),
    ])
    def test_transport_errors(self, client, error):
        with patch("vigil.audit.client.requests.post", side_effect=error):
            with pytest.raises(AuditServiceUnavailable):
                client.verify("system", "query")

    def test_http_error_status(self, client):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("429 Too Many Requests")
        with patch("vigil.audit.client.requests.post", return_value=response):
            with pytest.raises(AuditServiceUnavailable):
                client.verify("system", "query")

    def test_non_json_body(self, client):
        response = MagicMock()
        response.json.side_effect = ValueError("Expecting value")
        with patch("vigil.audit.client.requests.post", return_value=response):
            with pytest.raises(AuditServiceUnavailable):
                client.verify("system", "query")

    def test_mock_mode_without_key(self, monkeypatch):
        monkeypatch.delenv("USE_MOCK_AUDIT", raising=False)

        with patch("vigil.audit.client.get_audit_api_key", return_value=None):
            client = AuditClient()

        assert client.use_mock is True
        with patch("vigil.audit.client.requests.post") as post:
            response = client.verify("system", "query")
        post.assert_not_called()
        assert json.loads(response.content)["verdict"] == "uncertain"

    def test_allowed_domains_from_env(self, monkeypatch):
        monkeypatch.setenv("AUDIT_ALLOWED_DOMAINS", "rsv.vd.ch, bger.ch ,")
        client = AuditClient(api_key="k", use_mock=False)
        assert client.allowed_domains == ["rsv.vd.ch", "bger.ch"]
