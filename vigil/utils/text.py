"""Citation key normalization and content hashing."""
import hashlib
import re

_ARTICLE_PREFIX = re.compile(r"^(?:article|art)\s*\.?\s*", re.IGNORECASE)
_QUALIFIERS = (
    (re.compile(r"\b(?:alinéa|alinea|al)\s*\.?\s*", re.IGNORECASE), "al. "),
    (re.compile(r"\b(?:lettre|let|lit)\s*\.?\s*", re.IGNORECASE), "let. "),
    (re.compile(r"\b(?:chiffre|ch)\s*\.?\s*", re.IGNORECASE), "ch. "),
)


def normalize_cite_key(cite_key: str) -> str:
    """
    Canonical form of a citation locator.

    "Article 17 Al.2", "art 17 al. 2" and "art. 17  al. 2" all become
    "art. 17 al. 2". Paragraph signs are treated as articles.
    """
    key = re.sub(r"\s+", " ", cite_key.replace("§", "art. ")).strip().lower()
    key = _ARTICLE_PREFIX.sub("", key)
    for pattern, replacement in _QUALIFIERS:
        key = pattern.sub(replacement, key)
    key = re.sub(r"\s*,\s*", " ", key)
    key = re.sub(r"\s+", " ", key).strip()
    return f"art. {key}" if key else ""


def article_key(cite_key: str) -> str:
    """Reduce a normalized locator to its article part ("art. 17 al. 2" -> "art. 17")."""
    parts = normalize_cite_key(cite_key).split(" ")
    return " ".join(parts[:2])


def content_hash(text: str) -> str:
    """SHA-256 hex digest of unit content."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def derive_key(*parts: object) -> str:
    """Deterministic idempotency key from natural identifiers."""
    raw = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]
