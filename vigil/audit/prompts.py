"""
Prompts for the external legal audit.

The auditor may only confirm or refute a claim that is already grounded in
the corpus. It is never asked for new legal bases.
"""
from typing import Dict, List

UNIT_EXCERPT_LENGTH = 500

VERIFICATION_SYSTEM_PROMPT = """Tu es un auditeur juridique suisse. Ton rôle se limite à confirmer ou infirmer une affirmation juridique déjà rattachée à un texte légal.

RÈGLES:
1. Tu n'ajoutes aucune base légale, aucun article, aucune loi qui ne figure pas dans la demande.
2. Tu compares l'affirmation au contenu fourni puis ce contenu aux sources officielles.
3. Toute divergence est signalée avec l'URL officielle qui la prouve.
4. Si tu ne peux pas vérifier, le verdict est "uncertain". N'invente jamais.

Sources admises: fedlex.admin.ch, rsv.vd.ch, admin.ch, vd.ch, bger.ch.

Réponds UNIQUEMENT avec un objet JSON:
{
  "verdict": "true" | "false" | "uncertain",
  "confidence": 0.0-1.0,
  "evidence_urls": ["https://..."],
  "verification_notes": "explication courte",
  "diff_found": null | {"claimed": "...", "official": "...", "source": "https://..."}
}"""

VERIFICATION_QUERY_TEMPLATE = """AFFIRMATION À VÉRIFIER:
"{claim_text}"

CONTENU DE LA BASE (référence interne):
{db_content}

EMPREINTES SHA-256: {hashes}

TÂCHE:
1. Vérifie que l'affirmation correspond au contenu de la base.
2. Vérifie sur les sources officielles que ce contenu est exact et en vigueur.
3. Signale toute divergence avec une URL officielle.

Réponds uniquement en JSON valide."""


def build_verification_query(claim_text: str, units: List[Dict]) -> str:
    """Audit query for one claim and its canonical units."""
    if units:
        db_content = "\n\n".join(
            f"[{u['instrument_uid']} {u['cite_key']}]: {u['content_text'][:UNIT_EXCERPT_LENGTH]}"
            for u in units
        )
        hashes = ", ".join(u["hash_sha256"] for u in units)
    else:
        db_content = "Aucun contenu disponible"
        hashes = "N/A"

    return VERIFICATION_QUERY_TEMPLATE.format(
        claim_text=claim_text,
        db_content=db_content,
        hashes=hashes,
    )
