"""
Entity normalization - canonical identity keys for companies, investors and rounds.

Used identically by the round grouper and the graph synchronizer so identity
never diverges between subsystems. All functions are pure and idempotent:
normalize(normalize(x)) == normalize(x).

Examples:
    >>> normalize_company("N26 GmbH")
    'n26'
    >>> normalize_investor("Acme Ventures")
    'acme'
    >>> make_round_key("N26 GmbH", "Series E+")
    'n26::seriese+'
"""

import re
from typing import Optional

# Legal-form suffixes (matched as whole tokens after punctuation removal)
COMPANY_SUFFIX_WORDS = frozenset({
    "gmbh", "ug", "ag", "se", "inc", "ltd", "llc", "corp",
    "sa", "sas", "bv", "ab", "plc", "co", "limited",
})

# Firm-type suffixes for investor organisations
INVESTOR_SUFFIX_WORDS = frozenset({
    "ventures", "capital", "partners", "management", "advisors",
    "group", "fund", "investments", "holding", "holdings",
})

# Dots, commas and apostrophes vanish ("Inc." -> "inc", "A.I." -> "ai");
# every other non-word character separates tokens.
_JOINING_PUNCT = re.compile(r"[.,'’]")
_SEPARATING_PUNCT = re.compile(r"[^\w\s]|_")

UNKNOWN_STAGE = "unknown"


def _clean(name: str) -> list[str]:
    text = _JOINING_PUNCT.sub("", name.lower())
    text = _SEPARATING_PUNCT.sub(" ", text)
    return text.split()


def _normalize(name: Optional[str], suffixes: frozenset) -> str:
    if not name:
        return ""
    tokens = _clean(name)
    kept = [t for t in tokens if t not in suffixes]
    # A name made only of suffix words ("Capital Partners") keeps its tokens
    return " ".join(kept or tokens)


def normalize_company(name: Optional[str]) -> str:
    """Canonical company key: lowercase, legal suffixes and punctuation removed."""
    return _normalize(name, COMPANY_SUFFIX_WORDS)


def normalize_investor(name: Optional[str]) -> str:
    """Canonical investor key: lowercase, firm-type suffixes and punctuation removed."""
    return _normalize(name, INVESTOR_SUFFIX_WORDS)


def normalize_stage(stage) -> str:
    """Stage key: lowercase with everything except [a-z0-9+] removed; 'unknown' when absent."""
    if stage is None:
        return UNKNOWN_STAGE
    value = getattr(stage, "value", stage)
    key = re.sub(r"[^a-z0-9+]", "", str(value).lower())
    return key or UNKNOWN_STAGE


def make_round_key(company_name: str, stage) -> str:
    """
    FundingRound identity: normalizedCompany::normalizedStage.

    One round per company per stage. Two distinct rounds of the same stage
    for the same company collapse into one node.
    """
    return f"{normalize_company(company_name)}::{normalize_stage(stage)}"
