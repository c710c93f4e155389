"""
Tests for audit response decoding.
"""
import pytest

from vigil.audit.parser import (
    MALFORMED_CONFIDENCE,
    MalformedVerdict,
    ParsedVerdict,
    decode_verdict,
    parse_audit_content,
)
from vigil.errors import AuditParseFailure

from conftest import verdict_json


class TestDecodeVerdict:
    """Test strict decoding of the verdict object."""

    def test_plain_json(self):
        decoded = decode_verdict(verdict_json("true", 0.85, ["https://www.rsv.vd.ch/x"]))
        assert decoded.verdict == "true"
        assert decoded.confidence == 0.85
        assert decoded.evidence_urls == ["https://www.rsv.vd.ch/x"]

    def test_fenced_json(self):
        content = "Voici mon analyse:\n```json\n" + verdict_json("false", 0.9) + "\n```\nFin."
        assert decode_verdict(content).verdict == "false"

    def test_json_surrounded_by_prose(self):
        content = "Résultat: " + verdict_json("uncertain", 0.4) + " (sources consultées)"
        assert decode_verdict(content).verdict == "uncertain"

    def test_missing_confidence_defaults(self):
        assert decode_verdict('{"verdict": "true"}').confidence == 0.5

    def test_extra_keys_ignored(self):
        assert decode_verdict('{"verdict": "true", "confidence": 1, "model": "x"}').verdict == "true"

    @pytest.mark.parametrize("content", [
        "Je ne peux pas vérifier cette affirmation.",
        '{"verdict": "true", "confidence": }',
        '{"verdict": "probably", "confidence": 0.9}',
        '{"verdict": "true", "confidence": 1.7}',
        '{"confidence": 0.9}',
        "```json\n[1, 2]\n```",
    ])
    def test_invalid_content_raises(self, content):
        with pytest.raises(AuditParseFailure):
            decode_verdict(content)


class TestParseAuditContent:
    """Test the Parsed | Malformed outcome."""

    def test_parsed_verdict(self):
        outcome = parse_audit_content(verdict_json("true", 0.92, notes="Conforme"))
        assert isinstance(outcome, ParsedVerdict)
        assert outcome.verdict == "true"
        assert outcome.notes == "Conforme"
        assert outcome.diff_summary is None

    def test_diff_summary(self):
        content = verdict_json("false", 0.95, diff_found={
            "claimed": "20 jours",
            "official": "30 jours",
            "source": "https://www.rsv.vd.ch/lpa",
        })
        outcome = parse_audit_content(content)
        assert outcome.diff_summary == 'Divergence: "20 jours" vs "30 jours" (https://www.rsv.vd.ch/lpa)'

    def test_diff_without_source(self):
        outcome = parse_audit_content(verdict_json("false", diff_found={"claimed": "a", "official": "b"}))
        assert outcome.diff_summary.endswith("(no source)")

    @pytest.mark.parametrize("content", ["", "Pas de JSON ici", '{"verdict": "TRUE"}', None])
    def test_malformed_is_uncertain(self, content):
        outcome = parse_audit_content(content)
        assert isinstance(outcome, MalformedVerdict)
        assert outcome.verdict == "uncertain"
        assert outcome.confidence == MALFORMED_CONFIDENCE
        assert outcome.evidence_urls == []
        assert outcome.notes.startswith("Unparseable audit response:")

    def test_malformed_never_confirms(self):
        # A "true" buried in free text must not be read as a confirmation
        outcome = parse_audit_content("verdict: true, confidence: 0.99")
        assert outcome.verdict == "uncertain"
