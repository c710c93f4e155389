"""
FastAPI Dependencies for VIGIL API.

Provides:
- Database connection
- Citation registry (loaded once per process)
- Pipeline components: corpus, detector, claim builder, audit verifier

Every component is built from injected collaborators so tests can
override get_db, get_registry and get_audit_service.
"""
import logging
from typing import Optional

from fastapi import Depends

from ..audit.client import AuditClient, get_audit_client
from ..audit.verifier import AuditVerifier
from ..claims.builder import ClaimBuilder
from ..corpus.store import CorpusStore
from ..database.legal_db import LegalDB, get_legal_db
from ..detection.detector import CitationDetector
from ..detection.registry import CitationRegistry, load_registry

logger = logging.getLogger(__name__)


# ============================================
# Shared State
# ============================================

_registry: Optional[CitationRegistry] = None


def get_db() -> LegalDB:
    """Get database connection."""
    return get_legal_db()


def get_registry() -> CitationRegistry:
    """Get the citation registry, loading it on first use."""
    global _registry
    if _registry is None:
        _registry = load_registry()
    return _registry


def get_audit_service() -> AuditClient:
    """Get the external audit client."""
    return get_audit_client()


# ============================================
# Pipeline Components
# ============================================

def get_corpus(db: LegalDB = Depends(get_db)) -> CorpusStore:
    return CorpusStore(db)


def get_detector(
    corpus: CorpusStore = Depends(get_corpus),
    db: LegalDB = Depends(get_db),
    registry: CitationRegistry = Depends(get_registry),
) -> CitationDetector:
    return CitationDetector(corpus, db, registry)


def get_claim_builder(
    corpus: CorpusStore = Depends(get_corpus),
    db: LegalDB = Depends(get_db),
    registry: CitationRegistry = Depends(get_registry),
) -> ClaimBuilder:
    return ClaimBuilder(corpus, db, registry)


def get_verifier(
    corpus: CorpusStore = Depends(get_corpus),
    db: LegalDB = Depends(get_db),
    client: AuditClient = Depends(get_audit_service),
) -> AuditVerifier:
    return AuditVerifier(corpus, db, client)
