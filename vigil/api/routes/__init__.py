"""
API Routes for VIGIL.
"""
from .audit import router as audit_router
from .claims import router as claims_router
from .corpus import router as corpus_router
from .detection import router as detection_router
from .health import router as health_router

__all__ = [
    "audit_router",
    "claims_router",
    "corpus_router",
    "detection_router",
    "health_router",
]
