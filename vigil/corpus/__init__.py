"""
Legal Corpus Store for VIGIL.

Provides:
- CorpusStore: versioned, hash-addressed legal instruments and units
- seed_corpus: load instruments and units from a JSON document
"""
from .store import CorpusStore, INSTRUMENT_STATUSES, REPLACEMENT_RELATIONS
from .seed import seed_corpus, load_seed_file

__all__ = [
    "CorpusStore",
    "INSTRUMENT_STATUSES",
    "REPLACEMENT_RELATIONS",
    "seed_corpus",
    "load_seed_file",
]
