"""
Pydantic Models for VIGIL API.

Request and response models for all API endpoints.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict


# ============================================
# Detection Models
# ============================================

class DetectionRequest(BaseModel):
    """
    Detection request.

    Subject and body are scanned together; sender and date are stored with
    the text record.
    """
    text_id: str = Field(..., min_length=1, max_length=64, description="Identifier of the email or letter")
    subject: str = Field("", description="Subject line")
    body: str = Field(..., description="Body text")
    sender: Optional[str] = Field(None, description="Sender address")
    date: Optional[str] = Field(None, description="Reception date (ISO 8601)")
    user_id: Optional[str] = Field(None, description="Owner of the text")
    incident_id: Optional[str] = Field(None, description="Incident the text belongs to")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "text_id": "email-2024-0412",
                "subject": "Recours contre la décision du 3 avril",
                "body": "Selon l'art. 95 LPA-VD, le recours doit être déposé dans les trente jours.",
                "sender": "greffe@vd.ch",
                "date": "2024-04-12",
            }
        }
    )


class Mention(BaseModel):
    """A detected legal reference."""
    mention_id: str
    match_type: str = Field(..., description="exact_citation, alias, keyword or domain_inference")
    match_text: str
    match_position: int
    confidence: float
    instrument_uid: Optional[str] = None
    cite_key: Optional[str] = None
    unit_id: Optional[str] = None
    resolved: bool
    candidates: List[Dict[str, Any]] = []


class DetectionSummary(BaseModel):
    total: int
    exact_citations: int
    resolved: int
    unresolved: int
    detected_domains: List[str]
    by_type: Dict[str, int]


class DetectionResponse(BaseModel):
    """Detection result: mentions, counts and warnings for unresolved citations."""
    text_id: str
    summary: DetectionSummary
    mentions: List[Mention]
    warnings: List[str]


# ============================================
# Claim Models
# ============================================

class AssertedReference(BaseModel):
    """Legal reference asserted by an upstream analyzer."""
    law: str = Field(..., description="Law abbreviation (LEO, LPA-VD, CC)")
    article: str = Field(..., description="Article locator ('17', 'art. 17 al. 2')")
    context: Optional[str] = Field(None, description="Sentence making the assertion")
    description: Optional[str] = None


class AssertedDeadline(BaseModel):
    days: int = Field(..., description="Number of days asserted")
    description: str = ""
    law: Optional[str] = None
    article: Optional[str] = None


class AnalysisResult(BaseModel):
    legal_references: List[AssertedReference] = []
    procedures: List[AssertedReference] = []
    rights: List[AssertedReference] = []
    deadlines: List[AssertedDeadline] = []
    assertions: List[str] = []


class ClaimBuildRequest(BaseModel):
    """
    Claim-building request.

    At least one of text_id or incident_id is required.
    """
    text_id: Optional[str] = None
    incident_id: Optional[str] = None
    analysis_result: Optional[AnalysisResult] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "text_id": "email-2024-0412",
                "analysis_result": {
                    "deadlines": [{"days": 30, "description": "Délai de recours", "law": "LPA-VD"}]
                },
            }
        }
    )


class ClaimBuildResponse(BaseModel):
    claims_built: int
    claims_blocked: int
    claim_ids: List[str]
    summary_by_type: Dict[str, int]
    blocked_reasons: List[str] = []


class ClaimView(BaseModel):
    """
    A stored claim with the verdict of its latest report.

    display_blocked is set while the latest report refutes the claim.
    """
    claim_id: str
    text_id: Optional[str] = None
    incident_id: Optional[str] = None
    user_id: Optional[str] = None
    claim_text: str
    claim_type: str
    expected_citations: List[Dict[str, Any]] = []
    unit_ids: List[str] = []
    risk_level: str
    source_basis: str
    status: str
    latest_verdict: Optional[str] = None
    latest_confidence: Optional[float] = None
    last_verified_at: Optional[str] = None
    display_blocked: bool = False
    created_at: str


# ============================================
# Audit Models
# ============================================

class AuditRequest(BaseModel):
    """Audit request. At least one selector is required."""
    claim_ids: Optional[List[str]] = None
    text_id: Optional[str] = None
    incident_id: Optional[str] = None


class VerificationResult(BaseModel):
    claim_id: str
    verdict: str = Field(..., description="true, false or uncertain")
    confidence: float
    evidence_urls: List[str]
    severity: str = Field(..., description="info, warning or error")
    diff_summary: Optional[str] = None
    notes: Optional[str] = None
    report_id: Optional[str] = None


class AuditResponse(BaseModel):
    verified_count: int
    summary: Dict[str, int]
    results: List[VerificationResult]
    skipped_claim_ids: List[str] = Field([], description="Requested claims beyond the batch size, not audited")


class VerificationReport(BaseModel):
    report_id: str
    claim_id: str
    verdict: str
    confidence: float
    evidence_urls: List[str]
    diff_summary: Optional[str] = None
    severity: str
    notes: Optional[str] = None
    unit_hashes: List[str] = []
    created_at: str


class AuditAlert(BaseModel):
    alert_id: str
    user_id: Optional[str] = None
    claim_id: Optional[str] = None
    alert_type: str
    severity: str
    title: str
    description: str
    related_text_id: Optional[str] = None
    related_incident_id: Optional[str] = None
    created_at: str


# ============================================
# Corpus Models
# ============================================

class Instrument(BaseModel):
    instrument_uid: str
    jurisdiction: str
    title: str
    abbreviation: Optional[str] = None
    domain_tags: List[str] = []
    current_status: str
    replaced_by: Optional[str] = None
    reference: Optional[str] = None
    updated_at: Optional[str] = None


class InstrumentDetail(Instrument):
    versions: List[Dict[str, Any]] = []
    relations: List[Dict[str, Any]] = []
    unit_counts: Dict[str, int] = {}


class Unit(BaseModel):
    unit_id: str
    instrument_uid: str
    cite_key: str
    unit_type: str
    content_text: str
    hash_sha256: str
    is_key_unit: bool
    version_id: str
    version_number: int
    valid_from: str
    valid_to: Optional[str] = None
    source_urls: List[str] = []


class InstrumentStatus(BaseModel):
    """Status of an instrument and, when no longer in force, its replacement chain."""
    instrument_uid: str
    title: str
    abbreviation: Optional[str] = None
    status: str
    in_force: bool
    replaced_by: Optional[Dict[str, Any]] = None
    replacement_chain: List[str] = []
    current: Optional[Dict[str, Any]] = None
    cycle_detected: bool = False
    diagnostic: Optional[str] = None
    last_checked: Optional[str] = None


# ============================================
# Health Models
# ============================================

class HealthStatus(BaseModel):
    """Health check response."""
    status: str = Field(..., description="healthy or unhealthy")
    version: str
    services: Dict[str, str]
    timestamp: datetime


class ServiceHealth(BaseModel):
    """Individual service health."""
    name: str
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None


# ============================================
# Error Models
# ============================================

class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this format with an error message,
    optional detail, and error code for programmatic handling.
    """
    error: str = Field(..., description="Error type/summary")
    detail: Optional[str] = Field(None, description="Detailed error message")
    code: Optional[str] = Field(None, description="Error code for programmatic handling")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Not Found",
                "detail": "Unknown text email-404",
                "code": "REFERENCE_NOT_FOUND"
            }
        }
    )
