"""
Relational Database Manager for the Legal Knowledge Base and Pipeline State.

This module provides connection management and the schema for:
- Legal corpus (instruments, versions, sources, units, relations)
- Source texts and incidents (owners of mentions and claims)
- Mentions, verification claims, verification reports, audit alerts

The corpus tables are read-mostly and written only by ingestion.
Pipeline tables are append/upsert keyed by natural identifiers.
"""
import json
import uuid
import logging
from typing import Optional, Dict, List, Any
from datetime import datetime, timezone
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from ..utils.secrets import database_url

logger = logging.getLogger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS legal_instruments (
        instrument_uid VARCHAR(64) PRIMARY KEY,
        jurisdiction VARCHAR(16) NOT NULL,
        title TEXT NOT NULL,
        abbreviation VARCHAR(32),
        domain_tags TEXT NOT NULL DEFAULT '[]',
        current_status VARCHAR(16) NOT NULL,
        replaced_by VARCHAR(64),
        reference VARCHAR(64),
        created_at VARCHAR(32) NOT NULL,
        updated_at VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS legal_versions (
        version_id VARCHAR(64) PRIMARY KEY,
        instrument_uid VARCHAR(64) NOT NULL REFERENCES legal_instruments(instrument_uid),
        version_number INTEGER NOT NULL,
        status VARCHAR(16) NOT NULL,
        valid_from VARCHAR(10) NOT NULL,
        valid_to VARCHAR(10),
        created_at VARCHAR(32) NOT NULL,
        UNIQUE (instrument_uid, version_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS legal_sources (
        source_id VARCHAR(64) PRIMARY KEY,
        version_id VARCHAR(64) NOT NULL REFERENCES legal_versions(version_id),
        source_url TEXT NOT NULL,
        authority VARCHAR(128),
        is_primary BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS legal_units (
        unit_id VARCHAR(64) PRIMARY KEY,
        version_id VARCHAR(64) NOT NULL REFERENCES legal_versions(version_id),
        instrument_uid VARCHAR(64) NOT NULL REFERENCES legal_instruments(instrument_uid),
        cite_key VARCHAR(64) NOT NULL,
        cite_key_norm VARCHAR(64) NOT NULL,
        unit_type VARCHAR(16) NOT NULL,
        content_text TEXT NOT NULL,
        hash_sha256 VARCHAR(64) NOT NULL,
        is_key_unit BOOLEAN NOT NULL DEFAULT FALSE,
        order_index INTEGER NOT NULL DEFAULT 0,
        UNIQUE (version_id, cite_key_norm)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS legal_relations (
        relation_id VARCHAR(64) PRIMARY KEY,
        from_instrument_uid VARCHAR(64) NOT NULL,
        to_instrument_uid VARCHAR(64) NOT NULL,
        relation_type VARCHAR(32) NOT NULL,
        effective_date VARCHAR(10),
        note TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS incidents (
        incident_id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64),
        title TEXT,
        created_at VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS source_texts (
        text_id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64),
        incident_id VARCHAR(64),
        subject TEXT,
        sender TEXT,
        received_at VARCHAR(32),
        created_at VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS legal_mentions (
        mention_id VARCHAR(64) PRIMARY KEY,
        text_id VARCHAR(64) NOT NULL,
        user_id VARCHAR(64),
        match_type VARCHAR(32) NOT NULL,
        match_text TEXT NOT NULL,
        match_position INTEGER NOT NULL,
        confidence REAL NOT NULL,
        instrument_uid VARCHAR(64),
        cite_key VARCHAR(64),
        unit_id VARCHAR(64),
        resolved BOOLEAN NOT NULL,
        resolution_method VARCHAR(32),
        candidates TEXT NOT NULL DEFAULT '[]',
        created_at VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS verification_claims (
        claim_id VARCHAR(64) PRIMARY KEY,
        text_id VARCHAR(64),
        incident_id VARCHAR(64),
        user_id VARCHAR(64),
        claim_text TEXT NOT NULL,
        claim_type VARCHAR(32) NOT NULL,
        expected_citations TEXT NOT NULL,
        unit_ids TEXT NOT NULL,
        risk_level VARCHAR(16) NOT NULL,
        source_basis VARCHAR(32) NOT NULL,
        status VARCHAR(16) NOT NULL,
        created_at VARCHAR(32) NOT NULL,
        updated_at VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS verification_reports (
        report_id VARCHAR(64) PRIMARY KEY,
        claim_id VARCHAR(64) NOT NULL REFERENCES verification_claims(claim_id),
        user_id VARCHAR(64),
        verdict VARCHAR(16) NOT NULL,
        confidence REAL NOT NULL,
        evidence_urls TEXT NOT NULL,
        diff_summary TEXT,
        severity VARCHAR(16) NOT NULL,
        notes TEXT,
        unit_hashes TEXT NOT NULL DEFAULT '[]',
        raw_response TEXT,
        created_at VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_alerts (
        alert_id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64),
        claim_id VARCHAR(64),
        alert_type VARCHAR(32) NOT NULL,
        severity VARCHAR(16) NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        related_text_id VARCHAR(64),
        related_incident_id VARCHAR(64),
        created_at VARCHAR(32) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_versions_instrument ON legal_versions(instrument_uid, valid_from)",
    "CREATE INDEX IF NOT EXISTS idx_units_version_key ON legal_units(version_id, cite_key_norm)",
    "CREATE INDEX IF NOT EXISTS idx_mentions_text ON legal_mentions(text_id)",
    "CREATE INDEX IF NOT EXISTS idx_claims_text ON verification_claims(text_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_claims_incident ON verification_claims(incident_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_reports_claim ON verification_reports(claim_id, created_at)",
]


def utcnow() -> str:
    """ISO timestamp used for all created_at/updated_at columns."""
    return datetime.now(timezone.utc).isoformat()


def _loads(value: Optional[str], default: Any) -> Any:
    if value is None:
        return default
    return json.loads(value)


class LegalDB:
    """
    Connection manager for the legal knowledge base and pipeline state.

    Example usage:
        db = LegalDB()
        db.init_schema()

        db.register_text("email-1", user_id="u1", subject="Recours")
        claims = db.list_claims(text_id="email-1", status="pending")
    """

    def __init__(self, connection_string: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy URL. Uses VIGIL_DATABASE_URL or the
                               POSTGRES_* environment variables if not provided.
        """
        if connection_string is None:
            connection_string = database_url()

        if connection_string.startswith("sqlite"):
            # Audit workers never touch the session; the collector thread does
            self.engine = create_engine(
                connection_string,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                connection_string,
                poolclass=QueuePool,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_pre_ping=True,  # Test connections before use (detect stale)
                pool_recycle=300,    # Recycle connections every 5 minutes
            )
        self.Session = sessionmaker(bind=self.engine)

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic cleanup.

        Usage:
            with db.get_session() as session:
                result = session.execute(query)
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """
        Initialize database schema (create tables if not exist).

        Call this once during application setup.
        """
        with self.get_session() as session:
            for statement in SCHEMA:
                session.execute(text(statement))
        logger.info(f"Schema initialized ({len(SCHEMA)} statements)")

    # ==========================================
    # Source Texts & Incidents
    # ==========================================

    def register_incident(self, incident_id: str, user_id: Optional[str] = None, title: Optional[str] = None) -> None:
        """Record an incident so claims can be scoped to it. Re-registering is a no-op."""
        with self.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO incidents (incident_id, user_id, title, created_at)
                    VALUES (:incident_id, :user_id, :title, :created_at)
                    ON CONFLICT (incident_id) DO NOTHING
                """),
                {"incident_id": incident_id, "user_id": user_id, "title": title, "created_at": utcnow()},
            )

    def register_text(
        self,
        text_id: str,
        user_id: Optional[str] = None,
        subject: Optional[str] = None,
        sender: Optional[str] = None,
        received_at: Optional[str] = None,
        incident_id: Optional[str] = None,
    ) -> None:
        """
        Record the owner of a piece of source text (an email, a letter).

        The body itself is not stored here; mail storage is a separate concern.
        Re-registering an existing text is a no-op.
        """
        with self.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO source_texts (
                        text_id, user_id, incident_id, subject, sender, received_at, created_at
                    ) VALUES (
                        :text_id, :user_id, :incident_id, :subject, :sender, :received_at, :created_at
                    )
                    ON CONFLICT (text_id) DO NOTHING
                """),
                {
                    "text_id": text_id,
                    "user_id": user_id,
                    "incident_id": incident_id,
                    "subject": subject,
                    "sender": sender,
                    "received_at": received_at,
                    "created_at": utcnow(),
                },
            )

    def get_text(self, text_id: str) -> Optional[Dict]:
        with self.get_session() as session:
            row = session.execute(
                text("SELECT text_id, user_id, incident_id, subject, sender, received_at FROM source_texts WHERE text_id = :text_id"),
                {"text_id": text_id},
            ).mappings().fetchone()
            return dict(row) if row else None

    def get_incident(self, incident_id: str) -> Optional[Dict]:
        with self.get_session() as session:
            row = session.execute(
                text("SELECT incident_id, user_id, title FROM incidents WHERE incident_id = :incident_id"),
                {"incident_id": incident_id},
            ).mappings().fetchone()
            return dict(row) if row else None

    # ==========================================
    # Mentions
    # ==========================================

    def save_mentions(self, text_id: str, user_id: Optional[str], mentions: List[Dict]) -> int:
        """
        Persist a detection pass in one transaction.

        Mentions are keyed by their deterministic mention_id, which includes
        the resolution outcome. Re-running detection on identical text against
        an unchanged corpus inserts nothing new; a pass that resolves a mention
        differently appends a new row and leaves the earlier one untouched.

        Returns:
            Number of newly inserted mentions.
        """
        inserted = 0
        now = utcnow()
        with self.get_session() as session:
            for m in mentions:
                result = session.execute(
                    text("""
                        INSERT INTO legal_mentions (
                            mention_id, text_id, user_id, match_type, match_text, match_position,
                            confidence, instrument_uid, cite_key, unit_id, resolved,
                            resolution_method, candidates, created_at
                        ) VALUES (
                            :mention_id, :text_id, :user_id, :match_type, :match_text, :match_position,
                            :confidence, :instrument_uid, :cite_key, :unit_id, :resolved,
                            :resolution_method, :candidates, :created_at
                        )
                        ON CONFLICT (mention_id) DO NOTHING
                    """),
                    {
                        "mention_id": m["mention_id"],
                        "text_id": text_id,
                        "user_id": user_id,
                        "match_type": m["match_type"],
                        "match_text": m["match_text"],
                        "match_position": m["match_position"],
                        "confidence": m["confidence"],
                        "instrument_uid": m.get("instrument_uid"),
                        "cite_key": m.get("cite_key"),
                        "unit_id": m.get("unit_id"),
                        "resolved": m["resolved"],
                        "resolution_method": "db_lookup" if m["resolved"] else None,
                        "candidates": json.dumps(m.get("candidates", [])),
                        "created_at": now,
                    },
                )
                inserted += result.rowcount or 0
        return inserted

    def list_mentions(self, text_ids: List[str], resolved_only: bool = False) -> List[Dict]:
        """Mentions for the given texts, in detection order."""
        if not text_ids:
            return []
        params = {f"t{i}": t for i, t in enumerate(text_ids)}
        placeholders = ", ".join(f":{k}" for k in params)
        query = f"""
            SELECT mention_id, text_id, user_id, match_type, match_text, match_position,
                   confidence, instrument_uid, cite_key, unit_id, resolved, candidates
            FROM legal_mentions
            WHERE text_id IN ({placeholders})
        """
        if resolved_only:
            query += " AND resolved = :resolved"
            params["resolved"] = True
        query += " ORDER BY text_id, match_position, created_at, mention_id"

        with self.get_session() as session:
            rows = session.execute(text(query), params).mappings().fetchall()

        mentions = []
        for row in rows:
            mention = dict(row)
            mention["resolved"] = bool(mention["resolved"])
            mention["candidates"] = _loads(mention["candidates"], [])
            mentions.append(mention)
        return mentions

    def text_ids_for_incident(self, incident_id: str) -> List[str]:
        with self.get_session() as session:
            rows = session.execute(
                text("SELECT text_id FROM source_texts WHERE incident_id = :incident_id ORDER BY text_id"),
                {"incident_id": incident_id},
            ).fetchall()
        return [r[0] for r in rows]

    # ==========================================
    # Verification Claims
    # ==========================================

    def save_claims(self, claims: List[Dict]) -> List[str]:
        """
        Store accepted claims as pending in one transaction.

        Claims are keyed by their deterministic claim_id; an identical claim
        built twice keeps its original row and status.

        Returns:
            Claim ids in input order.
        """
        now = utcnow()
        with self.get_session() as session:
            for c in claims:
                session.execute(
                    text("""
                        INSERT INTO verification_claims (
                            claim_id, text_id, incident_id, user_id, claim_text, claim_type,
                            expected_citations, unit_ids, risk_level, source_basis, status,
                            created_at, updated_at
                        ) VALUES (
                            :claim_id, :text_id, :incident_id, :user_id, :claim_text, :claim_type,
                            :expected_citations, :unit_ids, :risk_level, :source_basis, 'pending',
                            :created_at, :updated_at
                        )
                        ON CONFLICT (claim_id) DO NOTHING
                    """),
                    {
                        "claim_id": c["claim_id"],
                        "text_id": c.get("text_id"),
                        "incident_id": c.get("incident_id"),
                        "user_id": c.get("user_id"),
                        "claim_text": c["claim_text"],
                        "claim_type": c["claim_type"],
                        "expected_citations": json.dumps(c["expected_citations"]),
                        "unit_ids": json.dumps(c["unit_ids"]),
                        "risk_level": c["risk_level"],
                        "source_basis": c["source_basis"],
                        "created_at": now,
                        "updated_at": now,
                    },
                )
        return [c["claim_id"] for c in claims]

    def _claim_from_row(self, row) -> Dict:
        claim = dict(row)
        claim["expected_citations"] = _loads(claim["expected_citations"], [])
        claim["unit_ids"] = _loads(claim["unit_ids"], [])
        return claim

    def get_claim(self, claim_id: str) -> Optional[Dict]:
        claims = self.list_claims(claim_ids=[claim_id])
        return claims[0] if claims else None

    def list_claims(
        self,
        claim_ids: Optional[List[str]] = None,
        text_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict]:
        """Select claims by id list, text or incident, optionally filtered by status."""
        clauses = []
        params: Dict[str, Any] = {}
        if claim_ids is not None:
            if not claim_ids:
                return []
            params.update({f"c{i}": cid for i, cid in enumerate(claim_ids)})
            clauses.append("claim_id IN (" + ", ".join(f":c{i}" for i in range(len(claim_ids))) + ")")
        if text_id is not None:
            clauses.append("text_id = :text_id")
            params["text_id"] = text_id
        if incident_id is not None:
            clauses.append("incident_id = :incident_id")
            params["incident_id"] = incident_id
        if status is not None:
            clauses.append("status = :status")
            params["status"] = status

        query = """
            SELECT claim_id, text_id, incident_id, user_id, claim_text, claim_type,
                   expected_citations, unit_ids, risk_level, source_basis, status,
                   created_at, updated_at
            FROM verification_claims
        """
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, claim_id"
        if limit is not None:
            query += " LIMIT :limit"
            params["limit"] = limit

        with self.get_session() as session:
            rows = session.execute(text(query), params).mappings().fetchall()
        return [self._claim_from_row(r) for r in rows]

    # ==========================================
    # Verification Reports & Alerts
    # ==========================================

    def record_verification(self, claim: Dict, report: Dict, alert: Optional[Dict] = None) -> str:
        """
        Atomically store one report, mark the claim verified and raise its alert.

        Args:
            claim: Claim row being audited.
            report: Verification report fields.
            alert: Optional critical alert (refutations only).

        Returns:
            report_id of the stored report.
        """
        report_id = str(uuid.uuid4())
        now = utcnow()
        with self.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO verification_reports (
                        report_id, claim_id, user_id, verdict, confidence, evidence_urls,
                        diff_summary, severity, notes, unit_hashes, raw_response, created_at
                    ) VALUES (
                        :report_id, :claim_id, :user_id, :verdict, :confidence, :evidence_urls,
                        :diff_summary, :severity, :notes, :unit_hashes, :raw_response, :created_at
                    )
                """),
                {
                    "report_id": report_id,
                    "claim_id": claim["claim_id"],
                    "user_id": claim.get("user_id"),
                    "verdict": report["verdict"],
                    "confidence": report["confidence"],
                    "evidence_urls": json.dumps(report["evidence_urls"]),
                    "diff_summary": report.get("diff_summary"),
                    "severity": report["severity"],
                    "notes": report.get("notes"),
                    "unit_hashes": json.dumps(report.get("unit_hashes", [])),
                    "raw_response": json.dumps(report["raw_response"]) if report.get("raw_response") is not None else None,
                    "created_at": now,
                },
            )
            session.execute(
                text("UPDATE verification_claims SET status = 'verified', updated_at = :now WHERE claim_id = :claim_id"),
                {"now": now, "claim_id": claim["claim_id"]},
            )
            if alert is not None:
                session.execute(
                    text("""
                        INSERT INTO audit_alerts (
                            alert_id, user_id, claim_id, alert_type, severity, title,
                            description, related_text_id, related_incident_id, created_at
                        ) VALUES (
                            :alert_id, :user_id, :claim_id, :alert_type, :severity, :title,
                            :description, :related_text_id, :related_incident_id, :created_at
                        )
                    """),
                    {
                        "alert_id": str(uuid.uuid4()),
                        "user_id": claim.get("user_id"),
                        "claim_id": claim["claim_id"],
                        "alert_type": alert["alert_type"],
                        "severity": alert["severity"],
                        "title": alert["title"],
                        "description": alert["description"],
                        "related_text_id": claim.get("text_id"),
                        "related_incident_id": claim.get("incident_id"),
                        "created_at": now,
                    },
                )
        return report_id

    def list_reports(self, claim_id: str) -> List[Dict]:
        """All reports for a claim, most recent first."""
        with self.get_session() as session:
            rows = session.execute(
                text("""
                    SELECT report_id, claim_id, verdict, confidence, evidence_urls, diff_summary,
                           severity, notes, unit_hashes, created_at
                    FROM verification_reports
                    WHERE claim_id = :claim_id
                    ORDER BY created_at DESC, report_id
                """),
                {"claim_id": claim_id},
            ).mappings().fetchall()

        reports = []
        for row in rows:
            report = dict(row)
            report["evidence_urls"] = _loads(report["evidence_urls"], [])
            report["unit_hashes"] = _loads(report["unit_hashes"], [])
            reports.append(report)
        return reports

    def latest_report(self, claim_id: str) -> Optional[Dict]:
        """The report that currently determines how a claim may be displayed."""
        reports = self.list_reports(claim_id)
        return reports[0] if reports else None

    def list_claim_views(
        self,
        claim_ids: Optional[List[str]] = None,
        text_id: Optional[str] = None,
        incident_id: Optional[str] = None,
    ) -> List[Dict]:
        """
        Claims with the verdict of their latest report.

        A claim whose latest report is "false" is display_blocked: it must
        not be shown as legally certain. A later confirming report clears
        the block. Claims never audited carry latest_verdict None.
        """
        claims = self.list_claims(claim_ids=claim_ids, text_id=text_id, incident_id=incident_id)
        if not claims:
            return []

        params = {f"c{i}": c["claim_id"] for i, c in enumerate(claims)}
        placeholders = ", ".join(f":{k}" for k in params)
        with self.get_session() as session:
            rows = session.execute(
                text(f"""
                    SELECT claim_id, verdict, confidence, severity, created_at
                    FROM verification_reports
                    WHERE claim_id IN ({placeholders})
                    ORDER BY created_at DESC, report_id
                """),
                params,
            ).mappings().fetchall()

        latest: Dict[str, Dict] = {}
        for row in rows:
            latest.setdefault(row["claim_id"], dict(row))

        for claim in claims:
            report = latest.get(claim["claim_id"])
            claim["latest_verdict"] = report["verdict"] if report else None
            claim["latest_confidence"] = report["confidence"] if report else None
            claim["last_verified_at"] = report["created_at"] if report else None
            claim["display_blocked"] = report is not None and report["verdict"] == "false"
        return claims

    def get_claim_view(self, claim_id: str) -> Optional[Dict]:
        views = self.list_claim_views(claim_ids=[claim_id])
        return views[0] if views else None

    def list_alerts(
        self,
        text_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict]:
        clauses = []
        params: Dict[str, Any] = {"limit": limit}
        if text_id is not None:
            clauses.append("related_text_id = :text_id")
            params["text_id"] = text_id
        if incident_id is not None:
            clauses.append("related_incident_id = :incident_id")
            params["incident_id"] = incident_id

        query = """
            SELECT alert_id, user_id, claim_id, alert_type, severity, title, description,
                   related_text_id, related_incident_id, created_at
            FROM audit_alerts
        """
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC LIMIT :limit"

        with self.get_session() as session:
            rows = session.execute(text(query), params).mappings().fetchall()
        return [dict(r) for r in rows]


# Singleton instance
_legal_db_instance: Optional[LegalDB] = None


def get_legal_db() -> LegalDB:
    """
    Get singleton LegalDB instance.

    Returns:
        LegalDB instance.
    """
    global _legal_db_instance
    if _legal_db_instance is None:
        _legal_db_instance = LegalDB()
    return _legal_db_instance
