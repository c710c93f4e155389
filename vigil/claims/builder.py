"""
Claim Builder.

Turns resolved mentions and externally supplied analysis results into
verification claims. A claim is only ever stored when it carries at least
one concrete corpus unit; everything else is dropped and counted.

Analysis result shape (all keys optional):
    {
      "legal_references": [{"law": "LEO", "article": "17", "context": "..."}],
      "procedures": [{"law": "LPA-VD", "article": "95", "description": "..."}],
      "rights": [{"law": "LEO", "article": "52", "description": "..."}],
      "deadlines": [{"days": 30, "description": "...", "law": "LPA-VD", "article": "95"}],
      "assertions": ["free text with no reference"]
    }
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..corpus.store import CorpusStore
from ..database.legal_db import LegalDB
from ..detection.registry import NUMBER_WORDS_FR, CitationRegistry
from ..errors import ReferenceNotFound, ResolutionUnavailable, UnbackedClaimDropped
from ..utils.text import article_key, derive_key, normalize_cite_key

logger = logging.getLogger(__name__)

CLAIM_TYPES = ("legal_assertion", "deadline_claim", "procedure_claim", "right_claim")
RISK_LEVELS = ("low", "medium", "high", "critical")
SOURCE_BASIS = "database_only"
EXCERPT_LENGTH = 200

# analysis_result key -> claim type
REFERENCE_FIELDS = (
    ("legal_references", "legal_assertion"),
    ("procedures", "procedure_claim"),
    ("rights", "right_claim"),
)


@dataclass
class ClaimDraft:
    """A claim candidate before the golden-rule gate."""
    claim_type: str
    claim_text: str
    unit_ids: List[str] = field(default_factory=list)
    expected_citations: List[Dict] = field(default_factory=list)
    risk_level: str = "medium"
    block_reason: Optional[str] = None


@dataclass
class ClaimBuildResult:
    claims_built: int
    claims_blocked: int
    claim_ids: List[str]
    summary_by_type: Dict[str, int]
    blocked_reasons: List[str]

    def to_dict(self) -> Dict:
        return {
            "claims_built": self.claims_built,
            "claims_blocked": self.claims_blocked,
            "claim_ids": self.claim_ids,
            "summary_by_type": self.summary_by_type,
            "blocked_reasons": self.blocked_reasons,
        }


def deadline_pattern(days: int) -> "re.Pattern":
    """
    Textual deadline of exactly `days` days ("30 jours", "trente jours",
    "délai de 30"). Never matches a longer number ("130 jours").
    """
    options = [rf"(?<!\d){days}(?!\d)"]
    word = NUMBER_WORDS_FR.get(days)
    if word:
        options.append(rf"(?<![\w-]){word}(?![\w-])")
    number = "(?:" + "|".join(options) + ")"
    return re.compile(rf"{number}\s+jours|délai\s+de\s+{number}", re.IGNORECASE)


def _deadline_fragments(days: int) -> List[str]:
    fragments = [f"{days} jours", f"délai de {days}"]
    word = NUMBER_WORDS_FR.get(days)
    if word:
        fragments += [f"{word} jours", f"délai de {word}"]
    return fragments


class ClaimBuilder:
    """
    Builds verification claims for a text or an incident.

    Usage:
        builder = ClaimBuilder(corpus, db, registry)
        result = builder.build(text_id="email-1", analysis_result={...})
        print(result.claims_built, result.claims_blocked)
    """

    def __init__(self, corpus: CorpusStore, db: LegalDB, registry: CitationRegistry):
        self.corpus = corpus
        self.db = db
        self.registry = registry

    def build(
        self,
        text_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        analysis_result: Optional[Dict] = None,
    ) -> ClaimBuildResult:
        """
        Build, gate and store claims.

        Every lookup happens before anything is written, so a corpus outage
        stores zero claims for the batch.

        Raises:
            ValueError: Neither text_id nor incident_id given.
            ReferenceNotFound: The text or incident does not exist.
            ResolutionUnavailable: The corpus could not be queried.
        """
        if not text_id and not incident_id:
            raise ValueError("text_id or incident_id required")

        logger.info(f"Building verification claims (text={text_id}, incident={incident_id})")
        analysis = analysis_result or {}

        try:
            owner = self._owner(text_id, incident_id)
            mentions = self._resolved_mentions(text_id, incident_id)
        except SQLAlchemyError as e:
            logger.error(f"Claim builder lookup failed: {e}")
            raise ResolutionUnavailable("Database unavailable while loading mentions") from e

        covered: Set[str] = set()
        drafts = self._from_mentions(mentions, covered)
        for key, claim_type in REFERENCE_FIELDS:
            for ref in analysis.get(key) or []:
                draft = self._from_reference(ref, claim_type, covered)
                if draft is not None:
                    drafts.append(draft)
        for deadline in analysis.get("deadlines") or []:
            drafts.append(self._from_deadline(deadline))
        for assertion in analysis.get("assertions") or []:
            drafts.append(ClaimDraft(
                claim_type="legal_assertion",
                claim_text=str(assertion),
                block_reason="assertion carries no legal reference",
            ))

        accepted, blocked_reasons = self._apply_gate(drafts)

        claims = []
        seen: Set[str] = set()
        for draft in accepted:
            claim = self._to_claim(draft, owner)
            if claim["claim_id"] in seen:
                continue
            seen.add(claim["claim_id"])
            claims.append(claim)

        claim_ids = self.db.save_claims(claims) if claims else []

        summary = {t: 0 for t in CLAIM_TYPES}
        for claim in claims:
            summary[claim["claim_type"]] += 1

        if blocked_reasons:
            logger.warning(f"Blocked {len(blocked_reasons)} claims without database backing")
        logger.info(f"Stored {len(claim_ids)} pending claims: {summary}")

        return ClaimBuildResult(
            claims_built=len(claim_ids),
            claims_blocked=len(blocked_reasons),
            claim_ids=claim_ids,
            summary_by_type=summary,
            blocked_reasons=blocked_reasons,
        )

    # ==========================================
    # Ownership
    # ==========================================

    def _owner(self, text_id: Optional[str], incident_id: Optional[str]) -> Dict:
        owner = {"text_id": text_id, "incident_id": incident_id, "user_id": None}
        if text_id:
            record = self.db.get_text(text_id)
            if record is None:
                raise ReferenceNotFound(f"Unknown text {text_id}")
            owner["user_id"] = record["user_id"]
            owner["incident_id"] = incident_id or record["incident_id"]
        if incident_id:
            incident = self.db.get_incident(incident_id)
            if incident is None:
                raise ReferenceNotFound(f"Unknown incident {incident_id}")
            owner["user_id"] = owner["user_id"] or incident["user_id"]
        return owner

    def _resolved_mentions(self, text_id: Optional[str], incident_id: Optional[str]) -> List[Dict]:
        text_ids = [text_id] if text_id else self.db.text_ids_for_incident(incident_id)
        return self.db.list_mentions(text_ids, resolved_only=True)

    # ==========================================
    # Drafting
    # ==========================================

    def _from_mentions(self, mentions: List[Dict], covered: Set[str]) -> List[ClaimDraft]:
        exact = [m for m in mentions if m["match_type"] == "exact_citation" and m.get("unit_id")]
        units = {u["unit_id"]: u for u in self.corpus.get_units_by_ids([m["unit_id"] for m in exact])}

        drafts = []
        for mention in exact:
            unit = units.get(mention["unit_id"])
            if unit is None or unit["unit_id"] in covered:
                continue
            covered.add(unit["unit_id"])
            excerpt = unit["content_text"][:EXCERPT_LENGTH]
            drafts.append(ClaimDraft(
                claim_type="legal_assertion",
                claim_text=f'Référence à {mention["match_text"]}: "{excerpt}..."',
                unit_ids=[unit["unit_id"]],
                expected_citations=[{"cite_key": unit["cite_key"], "instrument_uid": unit["instrument_uid"]}],
                risk_level="low" if mention["confidence"] > 0.8 else "medium",
            ))
        return drafts

    def _resolve_reference(self, law: str, article: str) -> Tuple[Optional[Dict], Optional[str]]:
        """Law + article -> current unit of the in-force instrument, or a reason."""
        canonical = self.registry.normalize(law)
        instruments = self.corpus.find_instruments(canonical)
        if not instruments:
            return None, f"no in-force instrument '{canonical}'"
        if len(instruments) > 1:
            return None, f"ambiguous law '{canonical}'"

        instrument_uid = instruments[0]["instrument_uid"]
        cite_key = normalize_cite_key(article)
        for key in dict.fromkeys([cite_key, article_key(cite_key)]):
            unit = self.corpus.get_unit(instrument_uid, key)
            if unit is not None:
                return unit, None
        return None, f"{cite_key} {instrument_uid} not in database"

    def _from_reference(self, ref: Dict, claim_type: str, covered: Set[str]) -> Optional[ClaimDraft]:
        law = str(ref.get("law") or "").strip()
        article = str(ref.get("article") or "").strip()
        text = ref.get("context") or ref.get("description") or f"art. {article} {law}".strip()

        if not law or not article:
            return ClaimDraft(claim_type=claim_type, claim_text=text, block_reason="reference without law or article")

        unit, reason = self._resolve_reference(law, article)
        if unit is None:
            return ClaimDraft(claim_type=claim_type, claim_text=text, block_reason=reason)
        if unit["unit_id"] in covered:
            return None

        covered.add(unit["unit_id"])
        return ClaimDraft(
            claim_type=claim_type,
            claim_text=text,
            unit_ids=[unit["unit_id"]],
            expected_citations=[{"cite_key": unit["cite_key"], "instrument_uid": unit["instrument_uid"]}],
            risk_level="medium",
        )

    def _from_deadline(self, deadline: Dict) -> ClaimDraft:
        description = deadline.get("description") or ""
        try:
            days = int(deadline.get("days"))
        except (TypeError, ValueError):
            days = 0
        text = f"Délai de {days} jours: {description}"
        if days <= 0:
            return ClaimDraft(claim_type="deadline_claim", claim_text=text, block_reason="invalid day count")

        law = str(deadline.get("law") or "").strip()
        article = str(deadline.get("article") or "").strip()
        if law and article:
            unit, reason = self._resolve_reference(law, article)
            if unit is None:
                return ClaimDraft(claim_type="deadline_claim", claim_text=text, block_reason=reason)
            candidates = [unit]
        else:
            instrument_uid = None
            if law:
                instruments = self.corpus.find_instruments(self.registry.normalize(law))
                if len(instruments) != 1:
                    return ClaimDraft(
                        claim_type="deadline_claim",
                        claim_text=text,
                        block_reason=f"law '{law}' not uniquely in force",
                    )
                instrument_uid = instruments[0]["instrument_uid"]
            # Unbounded: "130 jours" units also pass the prefilter and must not crowd out a real match
            candidates = self.corpus.find_units_containing(
                _deadline_fragments(days), instrument_uid=instrument_uid, limit=None
            )

        pattern = deadline_pattern(days)
        for unit in candidates:
            if pattern.search(unit["content_text"]):
                return ClaimDraft(
                    claim_type="deadline_claim",
                    claim_text=text,
                    unit_ids=[unit["unit_id"]],
                    expected_citations=[{"cite_key": unit["cite_key"], "instrument_uid": unit["instrument_uid"]}],
                    risk_level="high",
                )
        return ClaimDraft(
            claim_type="deadline_claim",
            claim_text=text,
            block_reason=f"no unit text states a {days}-day deadline",
        )

    # ==========================================
    # Golden rule
    # ==========================================

    @staticmethod
    def _gate(draft: ClaimDraft, known_units: Set[str]) -> None:
        if draft.block_reason:
            raise UnbackedClaimDropped(draft.claim_type, draft.claim_text, draft.block_reason)
        if not draft.unit_ids:
            raise UnbackedClaimDropped(draft.claim_type, draft.claim_text, "no unit reference")
        missing = [u for u in draft.unit_ids if u not in known_units]
        if missing:
            raise UnbackedClaimDropped(draft.claim_type, draft.claim_text, f"unknown units {missing}")

    def _apply_gate(self, drafts: List[ClaimDraft]) -> Tuple[List[ClaimDraft], List[str]]:
        referenced = sorted({u for d in drafts for u in d.unit_ids})
        known_units = {u["unit_id"] for u in self.corpus.get_units_by_ids(referenced)}

        accepted, blocked = [], []
        for draft in drafts:
            try:
                self._gate(draft, known_units)
            except UnbackedClaimDropped as e:
                logger.warning(f"Claim blocked [{e.claim_type}] {e.claim_text[:80]!r}: {e.reason}")
                blocked.append(f"{e.claim_type}: {e.reason}")
                continue
            accepted.append(draft)
        return accepted, blocked

    @staticmethod
    def _to_claim(draft: ClaimDraft, owner: Dict) -> Dict:
        unit_ids = sorted(draft.unit_ids)
        return {
            "claim_id": derive_key(
                owner["text_id"], owner["incident_id"], draft.claim_type, ",".join(unit_ids), draft.claim_text
            ),
            "text_id": owner["text_id"],
            "incident_id": owner["incident_id"],
            "user_id": owner["user_id"],
            "claim_text": draft.claim_text,
            "claim_type": draft.claim_type,
            "expected_citations": draft.expected_citations,
            "unit_ids": draft.unit_ids,
            "risk_level": draft.risk_level,
            "source_basis": SOURCE_BASIS,
        }
