"""
External audit of grounded claims.

Provides:
- AuditClient: search-augmented chat completion restricted to official domains
- AuditVerifier: batch verification with per-claim isolation
- parse_audit_content: strict verdict decoding (Parsed | Malformed)
"""
from .client import AuditClient, AuditResponse, get_audit_client
from .parser import AuditVerdict, MalformedVerdict, ParsedVerdict, parse_audit_content
from .verifier import AuditBatchResult, AuditVerifier, VerificationResult, merge_evidence, refutation_alert

__all__ = [
    "AuditClient",
    "AuditResponse",
    "get_audit_client",
    "AuditVerdict",
    "MalformedVerdict",
    "ParsedVerdict",
    "parse_audit_content",
    "AuditBatchResult",
    "AuditVerifier",
    "VerificationResult",
    "merge_evidence",
    "refutation_alert",
]
