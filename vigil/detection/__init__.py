"""Citation detection and resolution against the legal corpus."""
from .detector import CitationDetector, DetectionResult, MATCH_TYPES
from .registry import (
    CitationRegistry,
    NUMBER_WORDS_FR,
    default_registry,
    load_registry,
)

__all__ = [
    "CitationDetector",
    "DetectionResult",
    "MATCH_TYPES",
    "CitationRegistry",
    "NUMBER_WORDS_FR",
    "default_registry",
    "load_registry",
]
