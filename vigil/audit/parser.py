"""
Strict decoding of audit service answers.

Anything that is not a well-formed verdict object becomes a
MalformedVerdict, which always reads as "uncertain".
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import AuditParseFailure

logger = logging.getLogger(__name__)

MALFORMED_CONFIDENCE = 0.3

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class DiffFound(BaseModel):
    claimed: str
    official: str
    source: Optional[str] = None


class AuditVerdict(BaseModel):
    """Schema the audit service must answer with."""
    model_config = ConfigDict(extra="ignore")

    verdict: Literal["true", "false", "uncertain"]
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence_urls: List[str] = Field(default_factory=list)
    verification_notes: Optional[str] = None
    diff_found: Optional[DiffFound] = None


@dataclass(frozen=True)
class ParsedVerdict:
    decoded: AuditVerdict

    @property
    def verdict(self) -> str:
        return self.decoded.verdict

    @property
    def confidence(self) -> float:
        return self.decoded.confidence

    @property
    def evidence_urls(self) -> List[str]:
        return list(self.decoded.evidence_urls)

    @property
    def notes(self) -> Optional[str]:
        return self.decoded.verification_notes

    @property
    def diff_summary(self) -> Optional[str]:
        diff = self.decoded.diff_found
        if diff is None:
            return None
        return f'Divergence: "{diff.claimed}" vs "{diff.official}" ({diff.source or "no source"})'


@dataclass(frozen=True)
class MalformedVerdict:
    reason: str
    confidence: float = MALFORMED_CONFIDENCE
    evidence_urls: List[str] = field(default_factory=list)
    diff_summary: Optional[str] = None

    @property
    def verdict(self) -> str:
        return "uncertain"

    @property
    def notes(self) -> str:
        return f"Unparseable audit response: {self.reason}"


AuditOutcome = Union[ParsedVerdict, MalformedVerdict]


def decode_verdict(content: str) -> AuditVerdict:
    """
    Decode the JSON verdict embedded in a chat answer.

    Accepts a ```json fenced block or the outermost {...} in the text.

    Raises:
        AuditParseFailure: No JSON object, invalid JSON, or schema mismatch.
    """
    if "```json" in content:
        candidate = content.split("```json")[1].split("```")[0]
    else:
        match = _JSON_OBJECT.search(content)
        if match is None:
            raise AuditParseFailure("no JSON object in response")
        candidate = match.group(0)

    try:
        data = json.loads(candidate.strip())
    except json.JSONDecodeError as e:
        raise AuditParseFailure(f"invalid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise AuditParseFailure("verdict is not a JSON object")

    try:
        return AuditVerdict.model_validate(data)
    except ValidationError as e:
        raise AuditParseFailure(f"schema mismatch: {e.error_count()} errors") from e


def parse_audit_content(content: str) -> AuditOutcome:
    try:
        return ParsedVerdict(decode_verdict(content or ""))
    except AuditParseFailure as e:
        logger.warning(f"Audit response treated as uncertain: {e}")
        return MalformedVerdict(reason=str(e))
