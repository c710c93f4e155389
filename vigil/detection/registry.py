"""
Citation registry: abbreviation aliases, named-law aliases and domain keywords.

The registry is immutable once loaded and is passed explicitly to the
detector and the claim builder. It is built from the built-in Vaud/federal
tables, or from a JSON file with the same keys:

    {
      "aliases": {"LPers": "LPers-VD", "Cst": "Cst-VD"},
      "named_aliases": {"code civil": "CC"},
      "domain_keywords": {"formation": ["école", "élève"]}
    }
"""
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)


# Abbreviation as written -> canonical instrument abbreviation
DEFAULT_ALIASES: Dict[str, str] = {
    "LEO": "LEO",
    "RLEO": "RLEO",
    "LPS": "LPS",
    "LASV": "LASV",
    "LAJE": "LAJE",
    "LProMin": "LProMin",
    "LSP": "LSP",
    "LPFES": "LPFES",
    "LATC": "LATC",
    "RLATC": "RLATC",
    "LI": "LI",
    "LICom": "LICom",
    "LRou": "LRou",
    "LEAE": "LEAE",
    "LPers": "LPers-VD",
    "LPers-VD": "LPers-VD",
    "LJPA": "LJPA",
    "LPA": "LPA-VD",
    "LPA-VD": "LPA-VD",
    "LVPAE": "LVPAE",
    "LPol": "LPol",
    "LPrD": "LPrD",
    "LInfo": "LInfo",
    "CC": "CC",
    "ZGB": "CC",
    "CO": "CO",
    "OR": "CO",
    "CPC": "CPC",
    "CPP": "CPP",
    "CP": "CP",
    "Cst": "Cst-VD",
    "Cst-VD": "Cst-VD",
    "LAMal": "LAMal",
    "LAI": "LAI",
    "LAVS": "LAVS",
    "LPD": "LPD",
    "LAVI": "LAVI",
}

# Named references ("Code civil") -> canonical abbreviation
DEFAULT_NAMED_ALIASES: Dict[str, str] = {
    "code civil": "CC",
    "code des obligations": "CO",
    "code pénal": "CP",
    "code de procédure civile": "CPC",
    "code de procédure pénale": "CPP",
    "loi sur l'enseignement obligatoire": "LEO",
    "loi sur l'action sociale vaudoise": "LASV",
    "loi sur la protection des mineurs": "LProMin",
    "loi sur la procédure administrative": "LPA-VD",
    "loi sur la protection des données personnelles": "LPrD",
}

DEFAULT_DOMAIN_KEYWORDS: Dict[str, List[str]] = {
    "formation": ["école", "élève", "enseignement", "scolarité", "pédagogie", "éducation",
                  "classe", "professeur", "directeur", "établissement scolaire"],
    "social": ["aide sociale", "RI", "revenu d'insertion", "prestations", "subside",
               "allocation", "PCFam", "assistance"],
    "sante": ["hôpital", "médecin", "patient", "soins", "EMS", "CHUV", "santé", "maladie",
              "assurance-maladie"],
    "construction": ["permis de construire", "construction", "aménagement", "zone",
                     "parcelle", "bâtiment", "urbanisme"],
    "justice": ["tribunal", "procédure", "recours", "décision", "délai", "jugement",
                "plainte", "avocat"],
    "fiscalite": ["impôt", "taxation", "déclaration", "fisc", "contribuable", "revenus", "fortune"],
    "population": ["domicile", "habitants", "registre", "permis", "séjour", "étranger"],
    "famille": ["curatelle", "tutelle", "protection", "enfant", "mineur", "APEA", "SPJ"],
}

# Number words used in Vaud legislation for common time limits
NUMBER_WORDS_FR: Dict[int, str] = {
    2: "deux", 3: "trois", 5: "cinq", 7: "sept", 8: "huit", 10: "dix",
    14: "quatorze", 15: "quinze", 20: "vingt", 30: "trente", 60: "soixante",
    90: "nonante",
}


def _keyword_pattern(keyword: str) -> "re.Pattern":
    # Acronyms (RI, EMS, SPJ) must match case-sensitively
    flags = 0 if keyword.isupper() else re.IGNORECASE
    return re.compile(r"(?<!\w)" + re.escape(keyword) + r"(?!\w)", flags)


@dataclass(frozen=True)
class CitationRegistry:
    """
    Read-only lookup tables for citation detection.

    Attributes:
        aliases: Abbreviation as written -> canonical abbreviation
        named_aliases: Lower-case law name -> canonical abbreviation
        domain_keywords: Domain -> keyword tuple
    """
    aliases: Mapping[str, str]
    named_aliases: Mapping[str, str]
    domain_keywords: Mapping[str, Tuple[str, ...]]
    _folded: Mapping[str, str] = field(repr=False, compare=False, default_factory=lambda: MappingProxyType({}))
    _keyword_patterns: Mapping[str, Tuple[Tuple[str, "re.Pattern"], ...]] = field(
        repr=False, compare=False, default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def build(
        cls,
        aliases: Mapping[str, str],
        named_aliases: Mapping[str, str],
        domain_keywords: Mapping[str, List[str]],
    ) -> "CitationRegistry":
        keywords = {d: tuple(kws) for d, kws in domain_keywords.items()}
        return cls(
            aliases=MappingProxyType(dict(aliases)),
            named_aliases=MappingProxyType({k.lower(): v for k, v in named_aliases.items()}),
            domain_keywords=MappingProxyType(keywords),
            _folded=MappingProxyType({k.upper(): v for k, v in aliases.items()}),
            _keyword_patterns=MappingProxyType({
                d: tuple((kw, _keyword_pattern(kw)) for kw in kws) for d, kws in keywords.items()
            }),
        )

    def normalize(self, abbreviation: str) -> str:
        """Canonical abbreviation; unknown abbreviations are returned unchanged."""
        cleaned = abbreviation.strip().rstrip(".")
        if cleaned in self.aliases:
            return self.aliases[cleaned]
        return self._folded.get(cleaned.upper(), cleaned)

    def is_known(self, abbreviation: str) -> bool:
        cleaned = abbreviation.strip().rstrip(".")
        return cleaned in self.aliases or cleaned.upper() in self._folded

    def looks_like_abbreviation(self, token: str) -> bool:
        """
        Known alias, or a token with at least two capitals ("ZZZ", "LProMin").

        Keeps ordinary capitalized words ("Le", "Madame") out of citations.
        """
        if self.is_known(token):
            return True
        return sum(1 for c in token if c.isupper()) >= 2

    def resolve_name(self, name: str) -> Optional[str]:
        """Canonical abbreviation for a named reference, if known."""
        key = re.sub(r"\s+", " ", name.replace("’", "'")).strip().lower()
        return self.named_aliases.get(key)

    def match_domains(self, text: str) -> Dict[str, List[str]]:
        """
        Distinct keywords found per domain (whole-word matches).

        Returns every domain with at least one hit; callers apply thresholds.
        """
        hits = {}
        for domain, patterns in self._keyword_patterns.items():
            found = [kw for kw, pattern in patterns if pattern.search(text)]
            if found:
                hits[domain] = found
        return hits


def default_registry() -> CitationRegistry:
    return CitationRegistry.build(DEFAULT_ALIASES, DEFAULT_NAMED_ALIASES, DEFAULT_DOMAIN_KEYWORDS)


def load_registry(path: Optional[Union[str, Path]] = None) -> CitationRegistry:
    """
    Load the citation registry once at process start.

    Args:
        path: JSON registry file. Defaults to VIGIL_REGISTRY_PATH; the
              built-in tables are used when neither is set. Keys missing
              from the file fall back to the built-in tables.
    """
    path = path or os.getenv("VIGIL_REGISTRY_PATH")
    if not path:
        logger.info("Using built-in citation registry")
        return default_registry()

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    registry = CitationRegistry.build(
        data.get("aliases", DEFAULT_ALIASES),
        data.get("named_aliases", DEFAULT_NAMED_ALIASES),
        data.get("domain_keywords", DEFAULT_DOMAIN_KEYWORDS),
    )
    logger.info(
        f"Loaded citation registry from {path}: {len(registry.aliases)} aliases, "
        f"{len(registry.domain_keywords)} domains"
    )
    return registry
