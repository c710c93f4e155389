"""
Detection Endpoint.

Scans a piece of correspondence for legal citations and resolves them
against the corpus. No external AI service is involved.
"""
import logging

from fastapi import APIRouter, Depends

from ..models import DetectionRequest, DetectionResponse, ErrorResponse
from ..deps import get_detector
from ...detection.detector import CitationDetector

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/detection", tags=["Detection"])


@router.post(
    "",
    response_model=DetectionResponse,
    responses={
        503: {"model": ErrorResponse, "description": "Legal corpus unavailable"},
    },
)
def detect_mentions(
    detection_request: DetectionRequest,
    detector: CitationDetector = Depends(get_detector),
):
    """
    Detect legal mentions in a text.

    Every mention is stored, resolved or not. Unresolved exact citations
    are listed in `warnings`.
    """
    result = detector.detect(
        text_id=detection_request.text_id,
        subject=detection_request.subject,
        body=detection_request.body,
        sender=detection_request.sender,
        date=detection_request.date,
        user_id=detection_request.user_id,
        incident_id=detection_request.incident_id,
    )
    return result.to_dict()
