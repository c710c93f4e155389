"""
Audit Endpoints.

Verification of pending claims against official sources, plus read access
to verification reports and alerts.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..models import AuditAlert, AuditRequest, AuditResponse, ErrorResponse, VerificationReport
from ..deps import get_db, get_verifier
from ...audit.verifier import AuditVerifier
from ...database.legal_db import LegalDB

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/audit", tags=["Audit"])


@router.post(
    "",
    response_model=AuditResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No selector given"},
        404: {"model": ErrorResponse, "description": "Unknown claim, text or incident"},
        503: {"model": ErrorResponse, "description": "Legal corpus unavailable"},
    },
)
def audit_claims(
    audit_request: AuditRequest,
    verifier: AuditVerifier = Depends(get_verifier),
):
    """
    Audit a bounded batch of claims.

    A service failure on one claim is recorded as an `uncertain` report and
    never aborts the batch. Refuted claims raise a critical alert.
    """
    batch = verifier.verify(
        claim_ids=audit_request.claim_ids,
        text_id=audit_request.text_id,
        incident_id=audit_request.incident_id,
    )
    return batch.to_dict()


@router.get(
    "/claims/{claim_id}/reports",
    response_model=List[VerificationReport],
    responses={404: {"model": ErrorResponse, "description": "Unknown claim"}},
)
def list_claim_reports(claim_id: str, db: LegalDB = Depends(get_db)):
    """All verification reports of a claim, most recent first."""
    if db.get_claim(claim_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown claim {claim_id}",
        )
    return db.list_reports(claim_id)


@router.get("/alerts", response_model=List[AuditAlert])
def list_alerts(
    text_id: Optional[str] = Query(None),
    incident_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: LegalDB = Depends(get_db),
):
    """Audit alerts, most recent first."""
    return db.list_alerts(text_id=text_id, incident_id=incident_id, limit=limit)
