"""
Claim Endpoints.

Claim building plus read access for downstream display: every claim carries
the verdict of its latest report, and refuted claims are flagged
display_blocked.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..models import ClaimBuildRequest, ClaimBuildResponse, ClaimView, ErrorResponse
from ..deps import get_claim_builder, get_db
from ...claims.builder import ClaimBuilder
from ...database.legal_db import LegalDB

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/claims", tags=["Claims"])


@router.post(
    "/build",
    response_model=ClaimBuildResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Neither text_id nor incident_id given"},
        404: {"model": ErrorResponse, "description": "Unknown text or incident"},
        503: {"model": ErrorResponse, "description": "Legal corpus unavailable"},
    },
)
def build_claims(
    claim_request: ClaimBuildRequest,
    builder: ClaimBuilder = Depends(get_claim_builder),
):
    """
    Build verification claims from resolved mentions and an optional
    analysis result.

    Claims without a corpus unit are never stored; they are counted in
    `claims_blocked`.
    """
    analysis = None
    if claim_request.analysis_result is not None:
        analysis = claim_request.analysis_result.model_dump(exclude_none=True)

    result = builder.build(
        text_id=claim_request.text_id,
        incident_id=claim_request.incident_id,
        analysis_result=analysis,
    )
    return result.to_dict()


@router.get(
    "",
    response_model=List[ClaimView],
    responses={400: {"model": ErrorResponse, "description": "Neither text_id nor incident_id given"}},
)
def list_claims(
    text_id: Optional[str] = Query(None),
    incident_id: Optional[str] = Query(None),
    db: LegalDB = Depends(get_db),
):
    """Claims of a text or incident with their latest verdict."""
    if not text_id and not incident_id:
        raise ValueError("text_id or incident_id required")
    return db.list_claim_views(text_id=text_id, incident_id=incident_id)


@router.get(
    "/{claim_id}",
    response_model=ClaimView,
    responses={404: {"model": ErrorResponse, "description": "Unknown claim"}},
)
def get_claim(claim_id: str, db: LegalDB = Depends(get_db)):
    """
    One claim with its latest verdict.

    Check `display_blocked` before presenting the claim as legally certain.
    """
    view = db.get_claim_view(claim_id)
    if view is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown claim {claim_id}",
        )
    return view
