"""
Audit Verifier.

Submits pending claims, together with the canonical unit content they rest
on, to the external audit service and records one verification report per
claim. The service can only confirm or refute; it never adds legal content.

Concurrency model:
- Canonical units are fetched up front in the calling thread
- A bounded worker pool performs the HTTP calls; each worker returns a
  tagged outcome and never touches the database
- The collector records each claim atomically as its outcome arrives, so
  a stopped batch keeps every report already written
"""
import math
import os
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..corpus.store import CorpusStore
from ..database.legal_db import LegalDB
from ..errors import AuditServiceUnavailable, ReferenceNotFound, ResolutionUnavailable
from .client import AuditClient, AuditResponse
from .parser import parse_audit_content
from .prompts import VERIFICATION_SYSTEM_PROMPT, build_verification_query

logger = logging.getLogger(__name__)

VERDICTS = ("true", "false", "uncertain")
SEVERITY_BY_VERDICT = {"true": "info", "uncertain": "warning", "false": "error"}
TRANSPORT_FAILURE_CONFIDENCE = 0.0
REFUTATION_ALERT_TITLE = "Legal inconsistency detected"


@dataclass
class VerificationResult:
    claim_id: str
    verdict: str
    confidence: float
    evidence_urls: List[str]
    severity: str
    diff_summary: Optional[str] = None
    notes: Optional[str] = None
    report_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "claim_id": self.claim_id,
            "verdict": self.verdict,
            "confidence": self.confidence,
            "evidence_urls": self.evidence_urls,
            "severity": self.severity,
            "diff_summary": self.diff_summary,
            "notes": self.notes,
            "report_id": self.report_id,
        }


@dataclass
class AuditBatchResult:
    results: List[VerificationResult] = field(default_factory=list)
    # Explicitly requested claims left for a later batch
    skipped_claim_ids: List[str] = field(default_factory=list)

    @property
    def verified_count(self) -> int:
        return len(self.results)

    @property
    def summary(self) -> Dict[str, int]:
        counts = {v: 0 for v in VERDICTS}
        for r in self.results:
            counts[r.verdict] += 1
        return counts

    def to_dict(self) -> Dict:
        return {
            "verified_count": self.verified_count,
            "summary": self.summary,
            "results": [r.to_dict() for r in self.results],
            "skipped_claim_ids": self.skipped_claim_ids,
        }


def merge_evidence(*url_lists: List[str]) -> List[str]:
    """Concatenate URL lists, dropping blanks and duplicates, keeping first-seen order."""
    merged: List[str] = []
    for urls in url_lists:
        for url in urls or []:
            if isinstance(url, str) and url.strip() and url.strip() not in merged:
                merged.append(url.strip())
    return merged


def refutation_alert(claim: Dict, report: Dict) -> Dict:
    """Critical alert raised for a refuted claim."""
    excerpt = claim["claim_text"][:100]
    detail = report.get("diff_summary") or "Content could not be confirmed against official sources"
    return {
        "alert_type": "verification_failed",
        "severity": "critical",
        "title": REFUTATION_ALERT_TITLE,
        "description": f'Claim: "{excerpt}..." - {detail}',
    }


class AuditVerifier:
    """
    Audits pending claims against official sources.

    Usage:
        verifier = AuditVerifier(corpus, db, AuditClient())
        batch = verifier.verify(text_id="email-1")
        print(batch.summary)
    """

    def __init__(
        self,
        corpus: CorpusStore,
        db: LegalDB,
        client: AuditClient,
        batch_size: Optional[int] = None,
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.corpus = corpus
        self.db = db
        self.client = client
        self.batch_size = batch_size or int(os.getenv("AUDIT_BATCH_SIZE", "10"))
        self.max_workers = max_workers or int(os.getenv("AUDIT_MAX_WORKERS", "3"))
        self.timeout = timeout or getattr(client, "timeout", None) or float(os.getenv("AUDIT_TIMEOUT_SECONDS", "60"))

    def select_claims(
        self,
        claim_ids: Optional[List[str]] = None,
        text_id: Optional[str] = None,
        incident_id: Optional[str] = None,
    ) -> Tuple[List[Dict], List[str]]:
        """
        Claims to audit in this batch.

        Explicit ids may select already verified claims (re-verification) and
        are taken in request order; ids beyond the batch size are returned as
        skipped. Text and incident selectors only pick pending claims; the
        rest are left for the next batch.

        Returns:
            (claims, skipped_claim_ids)

        Raises:
            ValueError: No selector given.
            ReferenceNotFound: Unknown claim, text or incident.
        """
        if not claim_ids and not text_id and not incident_id:
            raise ValueError("claim_ids, text_id or incident_id required")

        try:
            if claim_ids:
                return self._select_by_ids(claim_ids)
            if text_id:
                if self.db.get_text(text_id) is None:
                    raise ReferenceNotFound(f"Unknown text {text_id}")
                return self.db.list_claims(text_id=text_id, status="pending", limit=self.batch_size), []
            if self.db.get_incident(incident_id) is None:
                raise ReferenceNotFound(f"Unknown incident {incident_id}")
            return self.db.list_claims(incident_id=incident_id, status="pending", limit=self.batch_size), []
        except SQLAlchemyError as e:
            logger.error(f"Claim selection failed: {e}")
            raise ResolutionUnavailable("Database unavailable while selecting claims") from e

    def _select_by_ids(self, claim_ids: List[str]) -> Tuple[List[Dict], List[str]]:
        requested = list(dict.fromkeys(claim_ids))
        found = {c["claim_id"]: c for c in self.db.list_claims(claim_ids=requested)}
        missing = [cid for cid in requested if cid not in found]
        if missing:
            raise ReferenceNotFound(f"Unknown claims {', '.join(missing)}")

        selected = [found[cid] for cid in requested[:self.batch_size]]
        skipped = requested[self.batch_size:]
        if skipped:
            logger.warning(
                f"Batch limited to {self.batch_size} claims, {len(skipped)} left for a later batch: {skipped}"
            )
        return selected, skipped

    def verify(
        self,
        claim_ids: Optional[List[str]] = None,
        text_id: Optional[str] = None,
        incident_id: Optional[str] = None,
    ) -> AuditBatchResult:
        """
        Audit one bounded batch of claims.

        Raises:
            ValueError: No selector given.
            ReferenceNotFound: Unknown claim, text or incident.
            ResolutionUnavailable: Canonical units could not be fetched;
                                   no external call is made.
        """
        claims, skipped = self.select_claims(claim_ids, text_id, incident_id)
        batch = AuditBatchResult(skipped_claim_ids=skipped)
        if not claims:
            logger.info("No claims to verify")
            return batch

        logger.info(f"Verifying {len(claims)} claims with {self.max_workers} workers")
        jobs = [(claim, self.corpus.get_units_by_ids(claim["unit_ids"])) for claim in claims]

        by_claim: Dict[str, VerificationResult] = {}
        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            future_to_job = {
                executor.submit(self._audit_worker, claim, units): (claim, units)
                for claim, units in jobs
            }
            rounds = math.ceil(len(jobs) / self.max_workers)
            try:
                for future in as_completed(future_to_job, timeout=self.timeout * rounds + 1):
                    claim, units = future_to_job[future]
                    status, payload = future.result()
                    by_claim[claim["claim_id"]] = self._record(claim, units, status, payload)
            except FuturesTimeout:
                for future, (claim, units) in future_to_job.items():
                    if claim["claim_id"] in by_claim:
                        continue
                    future.cancel()
                    logger.error(f"Audit of claim {claim['claim_id']} timed out")
                    by_claim[claim["claim_id"]] = self._record(
                        claim, units, "error", f"timed out after {self.timeout:.0f}s"
                    )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        batch.results = [by_claim[c["claim_id"]] for c in claims if c["claim_id"] in by_claim]
        logger.info(f"Audit batch complete: {batch.summary}")
        return batch

    def _audit_worker(self, claim: Dict, units: List[Dict]) -> Tuple[str, object]:
        """Runs in a pool thread: one HTTP call, tagged outcome, no database access."""
        query = build_verification_query(claim["claim_text"], units)
        try:
            return "ok", self.client.verify(VERIFICATION_SYSTEM_PROMPT, query)
        except AuditServiceUnavailable as e:
            return "error", str(e)
        except Exception as e:
            logger.exception(f"Unexpected audit failure for claim {claim['claim_id']}")
            return "error", f"{type(e).__name__}: {e}"

    def _record(self, claim: Dict, units: List[Dict], status: str, payload) -> VerificationResult:
        source_urls = merge_evidence(*[u.get("source_urls", []) for u in units])

        if status == "ok":
            response: AuditResponse = payload
            outcome = parse_audit_content(response.content)
            report = {
                "verdict": outcome.verdict,
                "confidence": outcome.confidence,
                "evidence_urls": merge_evidence(source_urls, outcome.evidence_urls, response.citations),
                "diff_summary": outcome.diff_summary,
                "notes": outcome.notes,
                "raw_response": response.raw,
            }
        else:
            logger.warning(f"Claim {claim['claim_id']} audited as uncertain: {payload}")
            report = {
                "verdict": "uncertain",
                "confidence": TRANSPORT_FAILURE_CONFIDENCE,
                "evidence_urls": source_urls,
                "diff_summary": None,
                "notes": f"Verification error: {payload}",
                "raw_response": None,
            }

        report["severity"] = SEVERITY_BY_VERDICT[report["verdict"]]
        report["unit_hashes"] = [u["hash_sha256"] for u in units]

        alert = None
        if report["verdict"] == "false":
            logger.warning(f"Blocking claim {claim['claim_id']}: {report['diff_summary'] or 'refuted'}")
            alert = refutation_alert(claim, report)

        report_id = self.db.record_verification(claim, report, alert=alert)
        return VerificationResult(
            claim_id=claim["claim_id"],
            verdict=report["verdict"],
            confidence=report["confidence"],
            evidence_urls=report["evidence_urls"],
            severity=report["severity"],
            diff_summary=report["diff_summary"],
            notes=report["notes"],
            report_id=report_id,
        )
