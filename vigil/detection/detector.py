"""
Citation Detector & Resolver.

Scans free text for legal citations and domain signals and resolves them
against the legal corpus. Produces mentions; never calls any external AI
service.

Handles:
- "art. 17 LEO", "article 17 de la LEO", "art. 17 al. 2 let. a LEO"
- "LEO art. 17", "§ 17"
- Named references from the registry ("Code civil")
- Domain inference from keyword sets (two distinct keywords per domain)
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..corpus.store import CorpusStore
from ..database.legal_db import LegalDB
from ..utils.text import article_key, derive_key, normalize_cite_key
from .registry import CitationRegistry

logger = logging.getLogger(__name__)

MATCH_TYPES = ("exact_citation", "alias", "keyword", "domain_inference")

CONFIDENCE_RESOLVED = 0.95
CONFIDENCE_UNRESOLVED = 0.5
CONFIDENCE_ALIAS_FOUND = 0.6
CONFIDENCE_ALIAS_UNKNOWN = 0.4
DOMAIN_MIN_KEYWORDS = 2

_ART = r"(?i:art(?:icle)?s?\.?|§)\s*"
_LOCATOR = (
    r"(?P<article>\d+[a-z]?(?:\s*(?i:bis|ter|quater))?)"
    r"(?P<qualifiers>(?:\s*,?\s*(?i:al(?:inéa)?|let(?:tre)?|lit|ch(?:iffre)?)\.?\s*(?:\d+[a-z]?|[a-z])(?![\w]))*)"
)
_ABBR = r"(?P<abbr>[A-Z][A-Za-z]{1,9}(?:-[A-Z]{2})?)(?![\w-])"

# Order matters: earlier patterns claim their span first
CITATION_PATTERNS: Tuple[Tuple[str, "re.Pattern"], ...] = (
    # art. 17 LEO / article 17 de la LEO / art. 17 al. 2 LEO
    ("article_first", re.compile(
        r"(?<!\w)" + _ART + _LOCATOR + r"\s+(?:(?i:de\s+la|du|de\s+l['’]|de)\s*)?" + _ABBR
    )),
    # LEO art. 17
    ("law_first", re.compile(r"(?<![\w-])" + _ABBR + r"\s+" + _ART + _LOCATOR)),
    # art. 17 / § 17 with no law named
    ("bare", re.compile(r"(?<!\w)" + _ART + _LOCATOR)),
)


@dataclass
class Resolution:
    """Outcome of resolving one (abbreviation, locator) pair."""
    resolved: bool
    instrument_uid: Optional[str] = None
    unit_id: Optional[str] = None
    candidates: List[Dict] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass
class DetectionResult:
    """Mentions and summary of one detection pass."""
    text_id: str
    mentions: List[Dict]
    warnings: List[str]
    detected_domains: List[str]

    @property
    def summary(self) -> Dict:
        exact = [m for m in self.mentions if m["match_type"] == "exact_citation"]
        resolved = sum(1 for m in self.mentions if m["resolved"])
        by_type = {t: 0 for t in MATCH_TYPES}
        for m in self.mentions:
            by_type[m["match_type"]] += 1
        return {
            "total": len(self.mentions),
            "exact_citations": len(exact),
            "resolved": resolved,
            "unresolved": len(self.mentions) - resolved,
            "detected_domains": self.detected_domains,
            "by_type": by_type,
        }

    def to_dict(self) -> Dict:
        return {
            "text_id": self.text_id,
            "summary": self.summary,
            "mentions": self.mentions,
            "warnings": self.warnings,
        }


class CitationDetector:
    """
    Detects and resolves legal references in correspondence.

    Usage:
        detector = CitationDetector(corpus, db, registry)
        result = detector.detect("email-1", subject, body, sender="x@vd.ch")
        print(result.summary)
    """

    def __init__(self, corpus: CorpusStore, db: LegalDB, registry: CitationRegistry):
        self.corpus = corpus
        self.db = db
        self.registry = registry
        self._named_pattern = self._build_named_pattern(registry)

    @staticmethod
    def _build_named_pattern(registry: CitationRegistry) -> Optional["re.Pattern"]:
        if not registry.named_aliases:
            return None
        names = sorted(registry.named_aliases, key=len, reverse=True)
        alternation = "|".join(
            re.escape(n).replace("'", "['’]").replace(r"\ ", r"\s+") for n in names
        )
        return re.compile(r"(?<!\w)(?:" + alternation + r")(?!\w)", re.IGNORECASE)

    def detect(
        self,
        text_id: str,
        subject: str,
        body: str,
        sender: Optional[str] = None,
        date: Optional[str] = None,
        user_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        persist: bool = True,
    ) -> DetectionResult:
        """
        Run one detection pass over subject + body.

        Args:
            text_id: Identifier of the source text (email, letter).
            subject: Subject line.
            body: Body text.
            sender: Sender address (stored with the text record).
            date: Reception date (stored with the text record).
            user_id: Owner of the text.
            incident_id: Incident the text belongs to, if any.
            persist: Store the text record and every mention.

        Returns:
            DetectionResult with ordered mentions, summary and warnings.

        Raises:
            ResolutionUnavailable: The corpus could not be queried; nothing is stored.
        """
        logger.info(f"Detecting legal mentions in text {text_id}")
        full_text = f"{subject or ''}\n\n{body or ''}"

        warnings: List[str] = []
        mentions = self._citation_mentions(text_id, full_text, warnings)
        mentions.extend(self._alias_mentions(text_id, full_text))
        mentions.sort(key=lambda m: (m["match_position"], MATCH_TYPES.index(m["match_type"])))

        domains, domain_mentions = self._domain_mentions(text_id, full_text, mentions)
        mentions.extend(domain_mentions)

        result = DetectionResult(
            text_id=text_id,
            mentions=mentions,
            warnings=warnings,
            detected_domains=domains,
        )

        if persist:
            self.db.register_text(
                text_id,
                user_id=user_id,
                subject=subject,
                sender=sender,
                received_at=date,
                incident_id=incident_id,
            )
            owner = self.db.get_text(text_id)
            inserted = self.db.save_mentions(text_id, owner["user_id"] if owner else user_id, mentions)
            logger.debug(f"Stored {inserted} new mentions for {text_id}")

        summary = result.summary
        logger.info(
            f"Text {text_id}: {summary['total']} mentions, {summary['resolved']} resolved, "
            f"domains={domains}"
        )
        for warning in warnings:
            logger.warning(f"[{text_id}] {warning}")
        return result

    # ==========================================
    # Exact citations
    # ==========================================

    def _citation_mentions(self, text_id: str, full_text: str, warnings: List[str]) -> List[Dict]:
        taken: List[Tuple[int, int]] = []
        mentions = []

        for shape, pattern in CITATION_PATTERNS:
            for match in pattern.finditer(full_text):
                start, end = match.span()
                if any(start < t_end and end > t_start for t_start, t_end in taken):
                    continue

                abbreviation = match.groupdict().get("abbr")
                if abbreviation is not None and not self.registry.looks_like_abbreviation(abbreviation):
                    continue

                taken.append((start, end))
                locator = match.group("article") + (match.group("qualifiers") or "")
                cite_key = normalize_cite_key(locator)
                match_text = re.sub(r"\s+", " ", match.group(0)).strip()

                if abbreviation is None:
                    resolution = Resolution(resolved=False, reason="no law named")
                else:
                    resolution = self._resolve_citation(abbreviation, cite_key)

                if not resolution.resolved:
                    warnings.append(f"Unresolved citation '{match_text}': {resolution.reason}")

                mentions.append(self._mention(
                    text_id,
                    match_type="exact_citation",
                    match_text=match_text,
                    position=start,
                    confidence=CONFIDENCE_RESOLVED if resolution.resolved else CONFIDENCE_UNRESOLVED,
                    cite_key=cite_key,
                    resolution=resolution,
                ))
        return mentions

    def _resolve_citation(self, abbreviation: str, cite_key: str) -> Resolution:
        """
        Abbreviation -> in-force instrument -> unit in its current version.

        Resolved only when a concrete unit is found. Ambiguous abbreviations
        are left unresolved with every candidate ranked.
        """
        canonical = self.registry.normalize(abbreviation)
        instruments = self.corpus.find_instruments(canonical)
        candidates = [
            {"instrument_uid": inst["instrument_uid"], "title": inst["title"], "score": round(1 - idx * 0.1, 2)}
            for idx, inst in enumerate(instruments)
        ]

        if not instruments:
            return Resolution(resolved=False, reason=self._missing_instrument_reason(canonical))

        if len(instruments) > 1:
            return Resolution(
                resolved=False,
                candidates=candidates,
                reason=f"ambiguous abbreviation '{canonical}' ({len(instruments)} instruments)",
            )

        instrument_uid = instruments[0]["instrument_uid"]
        for key in dict.fromkeys([cite_key, article_key(cite_key)]):
            unit = self.corpus.get_unit(instrument_uid, key)
            if unit is not None:
                return Resolution(
                    resolved=True,
                    instrument_uid=instrument_uid,
                    unit_id=unit["unit_id"],
                    candidates=candidates,
                )

        return Resolution(
            resolved=False,
            instrument_uid=instrument_uid,
            candidates=candidates,
            reason=f"{instrument_uid} has no unit '{cite_key}' in its current version",
        )

    def _missing_instrument_reason(self, canonical: str) -> str:
        retired = self.corpus.find_instruments(canonical, status=None)
        if not retired:
            return f"no in-force instrument '{canonical}' in the legal corpus"

        status = self.corpus.resolve_status(retired[0]["instrument_uid"])
        replacement = status["replaced_by"]["instrument_uid"] if status and status["replaced_by"] else None
        if replacement:
            return f"{retired[0]['instrument_uid']} is {retired[0]['current_status']}, replaced by {replacement}"
        return f"{retired[0]['instrument_uid']} is {retired[0]['current_status']}"

    # ==========================================
    # Named references
    # ==========================================

    def _alias_mentions(self, text_id: str, full_text: str) -> List[Dict]:
        if self._named_pattern is None:
            return []

        mentions = []
        for match in self._named_pattern.finditer(full_text):
            canonical = self.registry.resolve_name(match.group(0))
            instruments = self.corpus.find_instruments(canonical) if canonical else []
            candidates = [
                {"instrument_uid": inst["instrument_uid"], "title": inst["title"], "score": round(1 - idx * 0.1, 2)}
                for idx, inst in enumerate(instruments)
            ]
            mentions.append(self._mention(
                text_id,
                match_type="alias",
                match_text=re.sub(r"\s+", " ", match.group(0)),
                position=match.start(),
                confidence=CONFIDENCE_ALIAS_FOUND if instruments else CONFIDENCE_ALIAS_UNKNOWN,
                cite_key=None,
                resolution=Resolution(
                    resolved=False,
                    instrument_uid=instruments[0]["instrument_uid"] if len(instruments) == 1 else None,
                    candidates=candidates,
                ),
            ))
        return mentions

    # ==========================================
    # Domain inference
    # ==========================================

    def _domain_mentions(self, text_id: str, full_text: str, existing: List[Dict]) -> Tuple[List[str], List[Dict]]:
        hits = self.registry.match_domains(full_text)
        domains = sorted(d for d, kws in hits.items() if len(kws) >= DOMAIN_MIN_KEYWORDS)
        already = {m["instrument_uid"] for m in existing if m.get("instrument_uid")}

        mentions = []
        for domain in domains:
            keywords = hits[domain]
            instruments = [
                inst for inst in self.corpus.instruments_for_domains([domain])
                if inst["instrument_uid"] not in already
            ]
            confidence = round(min(0.3 + len(keywords) * 0.1, 0.7), 2)
            mentions.append(self._mention(
                text_id,
                match_type="domain_inference",
                match_text=f"Domain detected: {domain} ({', '.join(keywords)})",
                position=0,
                confidence=confidence,
                cite_key=None,
                resolution=Resolution(
                    resolved=False,
                    candidates=[
                        {"instrument_uid": inst["instrument_uid"], "title": inst["title"], "score": confidence}
                        for inst in instruments
                    ],
                ),
            ))
        return domains, mentions

    @staticmethod
    def _mention(
        text_id: str,
        match_type: str,
        match_text: str,
        position: int,
        confidence: float,
        cite_key: Optional[str],
        resolution: Resolution,
    ) -> Dict:
        # A pass that resolves differently (e.g. after a new version) stores a new mention
        return {
            "mention_id": derive_key(
                text_id, match_type, position, match_text,
                resolution.resolved, resolution.instrument_uid, resolution.unit_id,
            ),
            "match_type": match_type,
            "match_text": match_text,
            "match_position": position,
            "confidence": confidence,
            "instrument_uid": resolution.instrument_uid,
            "cite_key": cite_key,
            "unit_id": resolution.unit_id,
            "resolved": resolution.resolved,
            "candidates": resolution.candidates,
        }
