"""
Pytest configuration and shared fixtures for VIGIL tests.

This module provides common test fixtures for:
- Temporary SQLite databases with the full schema
- A corpus seeded from data/seed/vaud_core.json
- Pipeline components wired to that corpus
- A fake audit client (no network access in tests)
"""
import json
import threading
import time
import pytest
from pathlib import Path

from vigil.audit.client import AuditResponse
from vigil.claims.builder import ClaimBuilder
from vigil.corpus import CorpusStore, load_seed_file, seed_corpus
from vigil.database.legal_db import LegalDB
from vigil.detection.detector import CitationDetector
from vigil.detection.registry import default_registry

SEED_FILE = Path(__file__).parent.parent / "data" / "seed" / "vaud_core.json"


def verdict_json(verdict="true", confidence=0.9, evidence_urls=None, diff_found=None, notes="ok"):
    """Audit service answer in the expected JSON shape."""
    return json.dumps({
        "verdict": verdict,
        "confidence": confidence,
        "evidence_urls": evidence_urls or [],
        "verification_notes": notes,
        "diff_found": diff_found,
    })


class FakeAuditClient:
    """
    Stand-in for AuditClient.

    content may be a string or a callable(query) -> string; error, when set,
    is raised instead of answering.
    """

    def __init__(self, content=None, error=None, delay=0.0, citations=None, timeout=5.0):
        self.content = content if content is not None else verdict_json()
        self.error = error
        self.delay = delay
        self.citations = citations or []
        self.timeout = timeout
        self.use_mock = False
        self.model = "fake-sonar"
        self.queries = []
        self._lock = threading.Lock()

    def verify(self, system_prompt, query):
        with self._lock:
            self.queries.append(query)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        content = self.content(query) if callable(self.content) else self.content
        return AuditResponse(
            content=content,
            model=self.model,
            latency_ms=1.0,
            citations=list(self.citations),
            raw={"fake": True},
        )


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture
def legal_db(tmp_path):
    """
    Empty database with the full schema in a temporary SQLite file.
    Automatically cleaned up after test completes.
    """
    db = LegalDB(f"sqlite:///{tmp_path / 'vigil.db'}")
    db.init_schema()
    return db


@pytest.fixture
def corpus(legal_db):
    """Corpus store over an empty database."""
    return CorpusStore(legal_db)


@pytest.fixture
def seeded_corpus(corpus):
    """Corpus loaded with the Vaud sample instruments."""
    seed_corpus(corpus, load_seed_file(SEED_FILE))
    return corpus


# ============================================
# Pipeline Fixtures
# ============================================

@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def detector(seeded_corpus, legal_db, registry):
    return CitationDetector(seeded_corpus, legal_db, registry)


@pytest.fixture
def builder(seeded_corpus, legal_db, registry):
    return ClaimBuilder(seeded_corpus, legal_db, registry)


@pytest.fixture
def fake_audit_client():
    return FakeAuditClient()


@pytest.fixture
def sample_email():
    """Email citing LEO and LPA-VD, with enough keywords for two domains."""
    return {
        "text_id": "email-001",
        "subject": "Recours contre la décision de l'école",
        "body": (
            "Madame, selon l'art. 17 LEO, le directeur répond de l'établissement scolaire. "
            "Nous contestons la décision et déposerons un recours dans le délai prévu "
            "par l'art. 95 LPA-VD. Les élèves concernés ne peuvent pas attendre."
        ),
        "sender": "parent@example.ch",
        "date": "2024-04-12",
        "user_id": "user-1",
    }
