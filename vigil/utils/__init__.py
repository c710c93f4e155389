"""
Shared utilities for VIGIL.

This package provides:
- Secrets and connection settings
- Citation key normalization and content hashing
"""
from .secrets import database_url, get_audit_api_key, get_secret, mask_secret
from .text import article_key, content_hash, derive_key, normalize_cite_key

__all__ = [
    "database_url",
    "get_audit_api_key",
    "get_secret",
    "mask_secret",
    "article_key",
    "content_hash",
    "derive_key",
    "normalize_cite_key",
]
