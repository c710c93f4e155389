"""
Legal Corpus Store.

Versioned, hash-addressed repository of legal instruments and their units.

Read surface (used by the detector, the claim builder, the verifier and the API):
- find/search instruments by abbreviation, text, domain, jurisdiction
- fetch a unit by instrument + citation key, optionally as of a date
- resolve an instrument's status and replacement chain

Write surface (ingestion only):
- register_instrument, add_relation, publish_version

Units are never edited in place: new text means a new version.
"""
import json
import logging
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..database.legal_db import LegalDB, utcnow
from ..errors import ResolutionUnavailable
from ..utils.text import content_hash, derive_key, normalize_cite_key

logger = logging.getLogger(__name__)

INSTRUMENT_STATUSES = ("in_force", "repealed", "superseded")
REPLACEMENT_RELATIONS = ("repealed_by", "superseded_by", "replaced_by")

_INSTRUMENT_COLUMNS = """
    instrument_uid, jurisdiction, title, abbreviation, domain_tags,
    current_status, replaced_by, reference, updated_at
"""
_UNIT_COLUMNS = """
    u.unit_id, u.instrument_uid, u.cite_key, u.unit_type, u.content_text, u.hash_sha256,
    u.is_key_unit, u.order_index, v.version_id, v.version_number, v.valid_from, v.valid_to
"""


def _iso(value: Union[date, str, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(value).isoformat()


def _case_variants(fragments: Iterable[str]) -> List[str]:
    """
    Spellings of each fragment for a LIKE prefilter.

    SQL LOWER() and LIKE fold ASCII letters only, so accented capitals
    ("Délai") are matched by listing the usual casings explicitly.
    """
    variants: List[str] = []
    for fragment in fragments:
        for variant in (fragment, fragment.lower(), fragment[:1].upper() + fragment[1:].lower(), fragment.upper()):
            if variant and variant not in variants:
                variants.append(variant)
    return variants


def _instrument_from_row(row) -> Dict:
    instrument = dict(row)
    instrument["domain_tags"] = json.loads(instrument["domain_tags"] or "[]")
    return instrument


class CorpusStore:
    """
    Access layer over the legal knowledge base tables.

    Every read failure surfaces as ResolutionUnavailable; a lookup that
    finds nothing returns None or an empty list, never an error.
    """

    def __init__(self, db: LegalDB):
        self.db = db

    @contextmanager
    def _query(self, operation: str):
        try:
            with self.db.get_session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Corpus {operation} failed: {e}")
            raise ResolutionUnavailable(f"Legal corpus unavailable during {operation}") from e

    # ==========================================
    # Instruments
    # ==========================================

    def get_instrument_row(self, instrument_uid: str) -> Optional[Dict]:
        with self._query("instrument lookup") as session:
            row = session.execute(
                text(f"SELECT {_INSTRUMENT_COLUMNS} FROM legal_instruments WHERE instrument_uid = :uid"),
                {"uid": instrument_uid},
            ).mappings().fetchone()
        return _instrument_from_row(row) if row else None

    def find_instruments(self, abbreviation: str, status: Optional[str] = "in_force", limit: int = 5) -> List[Dict]:
        """
        Instruments whose abbreviation or uid equals the given abbreviation.

        Comparison is case-insensitive; an exact-case abbreviation match ranks first.
        """
        query = f"""
            SELECT {_INSTRUMENT_COLUMNS}
            FROM legal_instruments
            WHERE (LOWER(abbreviation) = :lower OR LOWER(instrument_uid) = :lower)
        """
        params = {"lower": abbreviation.lower(), "exact": abbreviation, "limit": limit}
        if status is not None:
            query += " AND current_status = :status"
            params["status"] = status
        query += """
            ORDER BY CASE WHEN abbreviation = :exact THEN 0 ELSE 1 END, instrument_uid
            LIMIT :limit
        """
        with self._query("abbreviation lookup") as session:
            rows = session.execute(text(query), params).mappings().fetchall()
        return [_instrument_from_row(r) for r in rows]

    def search_instruments(
        self,
        query: Optional[str] = None,
        domain_tags: Optional[Iterable[str]] = None,
        jurisdiction: Optional[str] = None,
        status: Optional[str] = "in_force",
        limit: int = 20,
    ) -> List[Dict]:
        """Search instruments by title/abbreviation/reference text, domain and jurisdiction."""
        clauses = []
        params: Dict = {}
        if query:
            clauses.append(
                "(LOWER(title) LIKE :q OR LOWER(abbreviation) LIKE :q OR LOWER(reference) LIKE :q)"
            )
            params["q"] = f"%{query.lower()}%"
        if jurisdiction:
            clauses.append("jurisdiction = :jurisdiction")
            params["jurisdiction"] = jurisdiction
        if status is not None:
            clauses.append("current_status = :status")
            params["status"] = status

        sql = f"SELECT {_INSTRUMENT_COLUMNS} FROM legal_instruments"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY instrument_uid"

        with self._query("instrument search") as session:
            rows = session.execute(text(sql), params).mappings().fetchall()

        instruments = [_instrument_from_row(r) for r in rows]
        if domain_tags:
            wanted = set(domain_tags)
            instruments = [i for i in instruments if wanted.intersection(i["domain_tags"])]
        return instruments[:limit]

    def instruments_for_domains(self, domains: Iterable[str], limit: int = 10) -> List[Dict]:
        """In-force instruments tagged with any of the given domains."""
        return self.search_instruments(domain_tags=list(domains), limit=limit)

    def get_instrument(self, instrument_uid: str) -> Optional[Dict]:
        """
        Instrument with its versions, outgoing relations and unit counts per type.
        """
        instrument = self.get_instrument_row(instrument_uid)
        if instrument is None:
            return None

        with self._query("instrument detail") as session:
            versions = session.execute(
                text("""
                    SELECT version_id, version_number, status, valid_from, valid_to
                    FROM legal_versions
                    WHERE instrument_uid = :uid
                    ORDER BY valid_from
                """),
                {"uid": instrument_uid},
            ).mappings().fetchall()
            relations = session.execute(
                text("""
                    SELECT relation_type, to_instrument_uid, effective_date, note
                    FROM legal_relations
                    WHERE from_instrument_uid = :uid
                    ORDER BY effective_date, relation_id
                """),
                {"uid": instrument_uid},
            ).mappings().fetchall()
            unit_counts = session.execute(
                text("""
                    SELECT unit_type, COUNT(*) AS n
                    FROM legal_units
                    WHERE instrument_uid = :uid
                    GROUP BY unit_type
                """),
                {"uid": instrument_uid},
            ).fetchall()

        instrument["versions"] = [dict(v) for v in versions]
        instrument["relations"] = [dict(r) for r in relations]
        instrument["unit_counts"] = {row[0]: row[1] for row in unit_counts}
        return instrument

    # ==========================================
    # Versions & Units
    # ==========================================

    def get_version_at(self, instrument_uid: str, as_of: Union[date, str, None] = None) -> Optional[Dict]:
        """
        Version of an instrument valid at a date, or the open (current) version.
        """
        if as_of is None:
            sql = """
                SELECT version_id, version_number, status, valid_from, valid_to
                FROM legal_versions
                WHERE instrument_uid = :uid AND valid_to IS NULL
            """
            params = {"uid": instrument_uid}
        else:
            sql = """
                SELECT version_id, version_number, status, valid_from, valid_to
                FROM legal_versions
                WHERE instrument_uid = :uid
                  AND valid_from <= :as_of
                  AND (valid_to IS NULL OR valid_to >= :as_of)
                ORDER BY version_number DESC
                LIMIT 1
            """
            params = {"uid": instrument_uid, "as_of": _iso(as_of)}

        with self._query("version lookup") as session:
            row = session.execute(text(sql), params).mappings().fetchone()
        return dict(row) if row else None

    def get_unit(
        self,
        instrument_uid: str,
        cite_key: str,
        as_of: Union[date, str, None] = None,
    ) -> Optional[Dict]:
        """
        Fetch a unit by instrument and citation key.

        Args:
            instrument_uid: Instrument identifier.
            cite_key: Human-readable locator ("art. 17", "Article 17 al. 2").
            as_of: Optional date; selects the version valid at that date.
                   Without it the current version is used.

        Returns:
            Unit dict with version info and primary source URLs, or None.
        """
        version = self.get_version_at(instrument_uid, as_of)
        if version is None:
            return None

        with self._query("unit lookup") as session:
            row = session.execute(
                text(f"""
                    SELECT {_UNIT_COLUMNS}
                    FROM legal_units u
                    JOIN legal_versions v ON v.version_id = u.version_id
                    WHERE u.version_id = :version_id AND u.cite_key_norm = :key
                """),
                {"version_id": version["version_id"], "key": normalize_cite_key(cite_key)},
            ).mappings().fetchone()

        if row is None:
            return None
        return self._attach_sources([dict(row)])[0]

    def get_units_by_ids(self, unit_ids: List[str]) -> List[Dict]:
        """Units by id (any version), with primary source URLs, in the order requested."""
        if not unit_ids:
            return []
        params = {f"u{i}": uid for i, uid in enumerate(unit_ids)}
        placeholders = ", ".join(f":{k}" for k in params)
        with self._query("unit fetch") as session:
            rows = session.execute(
                text(f"""
                    SELECT {_UNIT_COLUMNS}
                    FROM legal_units u
                    JOIN legal_versions v ON v.version_id = u.version_id
                    WHERE u.unit_id IN ({placeholders})
                """),
                params,
            ).mappings().fetchall()

        by_id = {r["unit_id"]: dict(r) for r in rows}
        units = [by_id[uid] for uid in unit_ids if uid in by_id]
        return self._attach_sources(units)

    def find_units_containing(
        self,
        fragments: List[str],
        instrument_uid: Optional[str] = None,
        limit: Optional[int] = 50,
    ) -> List[Dict]:
        """
        Current units of in-force instruments whose text contains any fragment.

        Matching is a case-insensitive substring prefilter that also folds
        accented capitals ("délai" finds "Délai"); callers apply their own
        precise checks on content_text. limit=None returns every match.
        """
        variants = _case_variants(fragments)
        if not variants:
            return []
        params: Dict = {f"f{i}": f"%{v}%" for i, v in enumerate(variants)}
        like = " OR ".join(f"u.content_text LIKE :f{i}" for i in range(len(variants)))
        sql = f"""
            SELECT {_UNIT_COLUMNS}
            FROM legal_units u
            JOIN legal_versions v ON v.version_id = u.version_id
            JOIN legal_instruments i ON i.instrument_uid = u.instrument_uid
            WHERE v.valid_to IS NULL
              AND i.current_status = 'in_force'
              AND ({like})
        """
        if instrument_uid is not None:
            sql += " AND u.instrument_uid = :uid"
            params["uid"] = instrument_uid
        sql += " ORDER BY u.instrument_uid, u.order_index, u.cite_key_norm"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit

        with self._query("unit text search") as session:
            rows = session.execute(text(sql), params).mappings().fetchall()

        return self._attach_sources([dict(r) for r in rows])

    def search_units(self, query: str, limit: int = 20) -> List[Dict]:
        """Text search across current units of in-force instruments."""
        return self.find_units_containing([query], limit=limit)

    def _attach_sources(self, units: List[Dict]) -> List[Dict]:
        if not units:
            return units
        version_ids = sorted({u["version_id"] for u in units})
        params = {f"v{i}": vid for i, vid in enumerate(version_ids)}
        placeholders = ", ".join(f":{k}" for k in params)
        params["primary"] = True
        with self._query("source lookup") as session:
            rows = session.execute(
                text(f"""
                    SELECT version_id, source_url
                    FROM legal_sources
                    WHERE version_id IN ({placeholders}) AND is_primary = :primary
                    ORDER BY source_id
                """),
                params,
            ).fetchall()

        sources: Dict[str, List[str]] = {}
        for version_id, url in rows:
            sources.setdefault(version_id, []).append(url)
        for unit in units:
            unit["is_key_unit"] = bool(unit["is_key_unit"])
            unit["source_urls"] = sources.get(unit["version_id"], [])
        return units

    # ==========================================
    # Status Resolution
    # ==========================================

    def _next_replacement(self, instrument: Dict) -> Optional[str]:
        if instrument.get("replaced_by"):
            return instrument["replaced_by"]
        params = {"uid": instrument["instrument_uid"]}
        params.update({f"r{i}": r for i, r in enumerate(REPLACEMENT_RELATIONS)})
        kinds = ", ".join(f":r{i}" for i in range(len(REPLACEMENT_RELATIONS)))
        with self._query("relation lookup") as session:
            row = session.execute(
                text(f"""
                    SELECT to_instrument_uid
                    FROM legal_relations
                    WHERE from_instrument_uid = :uid AND relation_type IN ({kinds})
                    ORDER BY effective_date, relation_id
                    LIMIT 1
                """),
                params,
            ).fetchone()
        return row[0] if row else None

    def resolve_status(self, instrument_uid: str) -> Optional[Dict]:
        """
        Current status of an instrument and, if it is no longer in force,
        the chain of replacements leading to an in-force instrument.

        Cyclic chains (A replaced by B replaced by A) stop at the first
        revisited instrument and are reported with a diagnostic.

        Returns:
            Status dict, or None if the instrument is unknown.
        """
        instrument = self.get_instrument_row(instrument_uid)
        if instrument is None:
            return None

        result = {
            "instrument_uid": instrument["instrument_uid"],
            "title": instrument["title"],
            "abbreviation": instrument["abbreviation"],
            "status": instrument["current_status"],
            "in_force": instrument["current_status"] == "in_force",
            "replaced_by": None,
            "replacement_chain": [],
            "current": None,
            "cycle_detected": False,
            "diagnostic": None,
            "last_checked": instrument["updated_at"],
        }
        if result["in_force"]:
            result["current"] = {"instrument_uid": instrument["instrument_uid"], "status": "in_force"}
            return result

        visited = {instrument["instrument_uid"]}
        current = instrument
        while current["current_status"] != "in_force":
            next_uid = self._next_replacement(current)
            if next_uid is None:
                result["diagnostic"] = f"No replacement recorded for {current['instrument_uid']}"
                break
            if next_uid in visited:
                result["cycle_detected"] = True
                result["diagnostic"] = (
                    f"Replacement cycle: {' -> '.join([instrument_uid] + result['replacement_chain'] + [next_uid])}"
                )
                logger.warning(result["diagnostic"])
                break
            replacement = self.get_instrument_row(next_uid)
            if replacement is None:
                result["diagnostic"] = f"Replacement {next_uid} is not in the corpus"
                break
            visited.add(next_uid)
            result["replacement_chain"].append(next_uid)
            if result["replaced_by"] is None:
                result["replaced_by"] = {
                    "instrument_uid": replacement["instrument_uid"],
                    "title": replacement["title"],
                    "abbreviation": replacement["abbreviation"],
                    "status": replacement["current_status"],
                }
            current = replacement

        if current["current_status"] == "in_force":
            result["current"] = {"instrument_uid": current["instrument_uid"], "status": "in_force"}
        return result

    # ==========================================
    # Ingestion
    # ==========================================

    def register_instrument(
        self,
        instrument_uid: str,
        title: str,
        jurisdiction: str,
        abbreviation: Optional[str] = None,
        domain_tags: Optional[List[str]] = None,
        status: str = "in_force",
        replaced_by: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> None:
        """
        Create or update an instrument's metadata.

        Raises:
            ValueError: Unknown status, or a repealed instrument with neither a
                        replacement pointer nor a recorded replacement relation.
        """
        if status not in INSTRUMENT_STATUSES:
            raise ValueError(f"Unknown instrument status '{status}'")
        if status == "repealed" and not replaced_by:
            if self._next_replacement({"instrument_uid": instrument_uid}) is None:
                raise ValueError(
                    f"Repealed instrument {instrument_uid} needs replaced_by or a replacement relation"
                )

        now = utcnow()
        params = {
            "uid": instrument_uid,
            "jurisdiction": jurisdiction,
            "title": title,
            "abbreviation": abbreviation,
            "domain_tags": json.dumps(sorted(domain_tags or [])),
            "status": status,
            "replaced_by": replaced_by,
            "reference": reference,
            "now": now,
        }
        with self.db.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO legal_instruments (
                        instrument_uid, jurisdiction, title, abbreviation, domain_tags,
                        current_status, replaced_by, reference, created_at, updated_at
                    ) VALUES (
                        :uid, :jurisdiction, :title, :abbreviation, :domain_tags,
                        :status, :replaced_by, :reference, :now, :now
                    )
                    ON CONFLICT (instrument_uid) DO UPDATE SET
                        jurisdiction = excluded.jurisdiction,
                        title = excluded.title,
                        abbreviation = excluded.abbreviation,
                        domain_tags = excluded.domain_tags,
                        current_status = excluded.current_status,
                        replaced_by = excluded.replaced_by,
                        reference = excluded.reference,
                        updated_at = excluded.updated_at
                """),
                params,
            )
        logger.info(f"Registered instrument {instrument_uid} ({status})")

    def add_relation(
        self,
        from_uid: str,
        to_uid: str,
        relation_type: str,
        effective_date: Union[date, str, None] = None,
        note: Optional[str] = None,
    ) -> str:
        """Record a relation between two instruments (e.g. repealed_by)."""
        relation_id = derive_key(from_uid, to_uid, relation_type)
        with self.db.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO legal_relations (
                        relation_id, from_instrument_uid, to_instrument_uid,
                        relation_type, effective_date, note
                    ) VALUES (:relation_id, :from_uid, :to_uid, :relation_type, :effective_date, :note)
                    ON CONFLICT (relation_id) DO NOTHING
                """),
                {
                    "relation_id": relation_id,
                    "from_uid": from_uid,
                    "to_uid": to_uid,
                    "relation_type": relation_type,
                    "effective_date": _iso(effective_date),
                    "note": note,
                },
            )
        return relation_id

    def add_source(
        self,
        version_id: str,
        source_url: str,
        authority: Optional[str] = None,
        is_primary: bool = False,
    ) -> str:
        """Attach an additional source (mirror, consolidated PDF) to a version."""
        source_id = derive_key(version_id, source_url)
        with self.db.get_session() as session:
            exists = session.execute(
                text("SELECT 1 FROM legal_versions WHERE version_id = :version_id"),
                {"version_id": version_id},
            ).fetchone()
            if not exists:
                raise ValueError(f"Unknown version {version_id}")
            session.execute(
                text("""
                    INSERT INTO legal_sources (source_id, version_id, source_url, authority, is_primary)
                    VALUES (:source_id, :version_id, :source_url, :authority, :is_primary)
                    ON CONFLICT (source_id) DO NOTHING
                """),
                {
                    "source_id": source_id,
                    "version_id": version_id,
                    "source_url": source_url,
                    "authority": authority,
                    "is_primary": is_primary,
                },
            )
        return source_id

    def publish_version(
        self,
        instrument_uid: str,
        valid_from: Union[date, str],
        units: List[Dict],
        source_url: Optional[str] = None,
        authority: Optional[str] = None,
    ) -> str:
        """
        Publish a new version of an instrument with its full set of units.

        The previously open version is closed the day before valid_from and
        marked superseded. Unit hashes are computed from content text.

        Args:
            instrument_uid: Registered instrument.
            valid_from: First day of validity; must be after the latest version's.
            units: Dicts with cite_key, content_text and optionally unit_type,
                   is_key_unit.
            source_url: Official primary source for this version.
            authority: Publishing authority.

        Returns:
            version_id of the new version.

        Raises:
            ValueError: Unknown instrument, out-of-order validity, or duplicate
                        citation keys within the version.
        """
        start = _iso(valid_from)
        keys = [normalize_cite_key(u["cite_key"]) for u in units]
        if len(set(keys)) != len(keys):
            raise ValueError(f"Duplicate citation keys in new version of {instrument_uid}")

        with self.db.get_session() as session:
            exists = session.execute(
                text("SELECT 1 FROM legal_instruments WHERE instrument_uid = :uid"),
                {"uid": instrument_uid},
            ).fetchone()
            if not exists:
                raise ValueError(f"Unknown instrument {instrument_uid}")

            latest = session.execute(
                text("""
                    SELECT version_id, version_number, valid_from
                    FROM legal_versions
                    WHERE instrument_uid = :uid
                    ORDER BY version_number DESC
                    LIMIT 1
                """),
                {"uid": instrument_uid},
            ).mappings().fetchone()

            number = 1
            if latest is not None:
                if start <= latest["valid_from"]:
                    raise ValueError(
                        f"Version of {instrument_uid} starting {start} does not follow {latest['valid_from']}"
                    )
                number = latest["version_number"] + 1
                closing = (date.fromisoformat(start) - timedelta(days=1)).isoformat()
                session.execute(
                    text("""
                        UPDATE legal_versions
                        SET valid_to = :closing, status = 'superseded'
                        WHERE instrument_uid = :uid AND valid_to IS NULL
                    """),
                    {"closing": closing, "uid": instrument_uid},
                )

            version_id = f"{instrument_uid}@v{number}"
            session.execute(
                text("""
                    INSERT INTO legal_versions (
                        version_id, instrument_uid, version_number, status, valid_from, valid_to, created_at
                    ) VALUES (:version_id, :uid, :number, 'in_force', :valid_from, NULL, :now)
                """),
                {"version_id": version_id, "uid": instrument_uid, "number": number, "valid_from": start, "now": utcnow()},
            )

            if source_url:
                session.execute(
                    text("""
                        INSERT INTO legal_sources (source_id, version_id, source_url, authority, is_primary)
                        VALUES (:source_id, :version_id, :source_url, :authority, :is_primary)
                    """),
                    {
                        "source_id": derive_key(version_id, source_url),
                        "version_id": version_id,
                        "source_url": source_url,
                        "authority": authority,
                        "is_primary": True,
                    },
                )

            for index, (unit, key) in enumerate(zip(units, keys)):
                session.execute(
                    text("""
                        INSERT INTO legal_units (
                            unit_id, version_id, instrument_uid, cite_key, cite_key_norm, unit_type,
                            content_text, hash_sha256, is_key_unit, order_index
                        ) VALUES (
                            :unit_id, :version_id, :uid, :cite_key, :cite_key_norm, :unit_type,
                            :content_text, :hash, :is_key_unit, :order_index
                        )
                    """),
                    {
                        "unit_id": derive_key(version_id, key),
                        "version_id": version_id,
                        "uid": instrument_uid,
                        "cite_key": unit["cite_key"],
                        "cite_key_norm": key,
                        "unit_type": unit.get("unit_type", "article"),
                        "content_text": unit["content_text"],
                        "hash": content_hash(unit["content_text"]),
                        "is_key_unit": bool(unit.get("is_key_unit", False)),
                        "order_index": index,
                    },
                )

        logger.info(f"Published {version_id} from {start} with {len(units)} units")
        return version_id
