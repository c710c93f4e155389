"""
Error taxonomy for the grounding and verification pipeline.

- ResolutionUnavailable: corpus lookup failed (retryable)
- ReferenceNotFound: unknown text/incident/claim id (caller error)
- UnbackedClaimDropped: golden-rule gate rejected a claim (counted, not a failure)
- AuditServiceUnavailable / AuditParseFailure: downgraded to "uncertain"

A refuted claim is not an error: it is stored as a "false" report with a
critical alert (see vigil.audit.verifier).
"""


class VigilError(Exception):
    """Base class for all pipeline errors."""


class ResolutionUnavailable(VigilError):
    """The legal corpus could not be queried."""

    retryable = True


class ReferenceNotFound(VigilError):
    """The caller referenced a text, incident or claim that does not exist."""

    retryable = False


class UnbackedClaimDropped(VigilError):
    """A claim candidate carried no concrete unit reference."""

    def __init__(self, claim_type: str, claim_text: str, reason: str):
        self.claim_type = claim_type
        self.claim_text = claim_text
        self.reason = reason
        super().__init__(f"{claim_type} blocked: {reason}")


class AuditServiceUnavailable(VigilError):
    """Transport, HTTP or timeout failure talking to the audit service."""


class AuditParseFailure(VigilError):
    """The audit service answered with something that is not a valid verdict."""
