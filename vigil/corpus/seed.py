"""
Corpus seeding from a JSON document.

Expected shape:
    {
      "instruments": [
        {"instrument_uid": "LEO", "title": "...", "jurisdiction": "VD",
         "abbreviation": "LEO", "domain_tags": ["formation"],
         "status": "in_force", "replaced_by": null, "reference": "BLV 400.02",
         "versions": [
            {"valid_from": "2013-08-01", "source_url": "https://...",
             "units": [{"cite_key": "art. 1", "content_text": "...", "is_key_unit": true}]}
         ]}
      ],
      "relations": [
        {"from": "LJPA", "to": "LPA-VD", "type": "repealed_by", "effective_date": "2009-01-01"}
      ]
    }

Relations are loaded first so repealed instruments can rely on them.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Union

from .store import CorpusStore

logger = logging.getLogger(__name__)


def load_seed_file(path: Union[str, Path]) -> Dict:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def seed_corpus(store: CorpusStore, data: Dict) -> Dict[str, int]:
    """
    Load instruments, versions, units and relations into the corpus.

    Instruments already carrying versions are skipped for version
    publication, so re-running a seed is harmless.

    Returns:
        Counts of instruments, versions, units and relations written.
    """
    stats = {"instruments": 0, "versions": 0, "units": 0, "relations": 0}

    for relation in data.get("relations", []):
        store.add_relation(
            relation["from"],
            relation["to"],
            relation["type"],
            effective_date=relation.get("effective_date"),
            note=relation.get("note"),
        )
        stats["relations"] += 1

    # In-force instruments first so replacement pointers land on existing rows
    instruments = sorted(
        data.get("instruments", []),
        key=lambda i: 0 if i.get("status", "in_force") == "in_force" else 1,
    )
    for entry in instruments:
        uid = entry["instrument_uid"]
        store.register_instrument(
            uid,
            title=entry["title"],
            jurisdiction=entry["jurisdiction"],
            abbreviation=entry.get("abbreviation"),
            domain_tags=entry.get("domain_tags", []),
            status=entry.get("status", "in_force"),
            replaced_by=entry.get("replaced_by"),
            reference=entry.get("reference"),
        )
        stats["instruments"] += 1

        existing = store.get_instrument(uid)
        if existing and existing["versions"]:
            logger.debug(f"{uid} already has versions, skipping")
            continue

        for version in sorted(entry.get("versions", []), key=lambda v: v["valid_from"]):
            store.publish_version(
                uid,
                version["valid_from"],
                version["units"],
                source_url=version.get("source_url"),
                authority=version.get("authority"),
            )
            stats["versions"] += 1
            stats["units"] += len(version["units"])

    logger.info(
        f"Seeded corpus: {stats['instruments']} instruments, {stats['versions']} versions, "
        f"{stats['units']} units, {stats['relations']} relations"
    )
    return stats
