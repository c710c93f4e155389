"""Verification claim construction under the database-backing rule."""
from .builder import (
    CLAIM_TYPES,
    SOURCE_BASIS,
    ClaimBuilder,
    ClaimBuildResult,
    ClaimDraft,
    deadline_pattern,
)

__all__ = [
    "CLAIM_TYPES",
    "SOURCE_BASIS",
    "ClaimBuilder",
    "ClaimBuildResult",
    "ClaimDraft",
    "deadline_pattern",
]
