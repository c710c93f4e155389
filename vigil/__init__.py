"""
VIGIL - Legal Grounding & Verification Core

Database first, audit second.

This package mines incoming correspondence for legal references, grounds every
legal claim in the canonical legal corpus, and hands grounded claims to an
external search-augmented model that may only confirm or refute them.
"""

__version__ = "0.1.0"
__author__ = "VIGIL Team"
