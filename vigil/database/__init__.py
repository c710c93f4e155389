"""
Database connection managers for VIGIL.

This package provides:
- legal_db: PostgreSQL (or SQLite) for the legal corpus and pipeline state
"""
from .legal_db import LegalDB, get_legal_db

__all__ = ["LegalDB", "get_legal_db"]
