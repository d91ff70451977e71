"""
Signal tables for the funding scorer.

Everything the scorer knows about funding language lives here as data:
trigger tiers, the positive rule table, the anti-pattern table, field
extraction patterns, the country table and the static FX table. The
scorer (analyst.scorer) only evaluates these tables.

Weights are additive; confidence = clamp(sum, 0, 1). An anti-pattern
matching the title costs its full penalty, one matching only the
title + first 500 body chars costs half.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

# =============================================================================
# TRIGGER TIERS (gate)
# =============================================================================

_UNIT = r"(?:m|mn|million|billion|bn|b|k|mio)"

# Tier 1: strong funding-announcement phrasing (title only)
TITLE_STRONG_TRIGGERS = [
    re.compile(rf"\braises?\s+[$€£]?[\d,.]+\s*{_UNIT}", re.I),
    re.compile(rf"\bsecures?\s+[$€£]?[\d,.]+\s*{_UNIT}", re.I),
    re.compile(r"\braises?\s+(?:EUR|USD|GBP|CHF)\s*[\d,.]+", re.I),
    re.compile(r"\bsecures?\s+(?:EUR|USD|GBP|CHF)\s*[\d,.]+", re.I),
    re.compile(rf"\bcloses?\s+[$€£]?[\d,.]+\s*{_UNIT}\s*(?:seed|series|round|funding)", re.I),
    re.compile(r"\b(?:seed|series\s+[a-e]\+?)\s+(?:round|funding)\s+of\s+[$€£]", re.I),
    re.compile(r"\bseries\s+[a-e]\+?\b.*\braises?\b", re.I),
    # "[Investor] leads $Xm round for [Company]"
    re.compile(rf"\bleads?\s+[$€£]?[\d,.]+\s*{_UNIT}\s*(?:round|funding|investment)", re.I),
    re.compile(rf"\bleads?\s+[$€£]?[\d,.]+\s*{_UNIT}", re.I),
]

# Tier 2: moderate triggers (title or body)
MODERATE_TRIGGERS = [
    re.compile(r"\b(?:raises?|raised)\s", re.I),
    re.compile(r"\b(?:secures?|secured)\s", re.I),
    re.compile(r"\b(?:closes?|closed)\s.*\b(?:round|funding)\b", re.I),
    re.compile(r"\b(?:leads?|led)\s+[$€£]?\s*[\d,.]+.{0,20}\b(?:round|funding)\b", re.I),
    re.compile(r"\bfunding\s+round\b", re.I),
    re.compile(r"\bcapital\s+raise\b", re.I),
    re.compile(r"\binvestment\s+round\b", re.I),
]

# Tier 3: weak triggers (need additional signals to pass thresholds)
WEAK_TRIGGERS = [
    re.compile(r"\bseries\s+[a-e]\+?\b", re.I),
    re.compile(r"\bseed\s+round\b", re.I),
    re.compile(r"\bpre[- ]?seed\b", re.I),
    re.compile(r"\bvc\s+funding\b", re.I),
    re.compile(r"\bventure\s+(?:capital|funding)\b", re.I),
]

# "Company raises $XM" in one clause
PROXIMITY_PATTERN = re.compile(
    r"\b[A-Z][a-zA-Z\-']{1,30}(?:\s+[A-Z][a-zA-Z\-']{1,30}){0,3}\s+"
    r"(?:raises?|secures?|closes?|bags?|lands?|nabs?|gets?|leads?)\s+"
    r"[$€£]?\s*[\d,.]+\s*(?:m|mn|million|billion|bn|b|mio\.?|millionen?)\b",
    re.I,
)

# Amount within ~80 chars after a trigger word
AMOUNT_NEAR_TRIGGER = re.compile(
    r"(?:raises?|secures?|closes?|leads?|funding|round).{0,80}[$€£]\s*[\d,.]+\s*(?:m|mn|million|billion|bn|b)\b",
    re.I,
)

# Proper noun directly before a trigger verb (case-sensitive on purpose)
COMPANY_BEFORE_TRIGGER = re.compile(
    r"\b[A-Z][a-zA-Z\-']+(?:\s+[A-Z][a-zA-Z\-']+){0,2}\s+"
    r"(?:raises?|secures?|closes?|gets?|lands?|announces?|leads?)"
)


def any_match(patterns, text: str) -> bool:
    return any(p.search(text) for p in patterns)


# =============================================================================
# RULE TABLES
# =============================================================================

@dataclass(frozen=True)
class ScoringContext:
    """Inputs every rule predicate sees."""
    title: str
    text: str
    amount: Optional[float] = None
    stage: Optional[str] = None
    investors: tuple = ()
    lead_investor: Optional[str] = None
    country: Optional[str] = None

    @property
    def anti_window(self) -> str:
        return f"{self.title} {self.text[:500]}"


@dataclass(frozen=True)
class Rule:
    """Named, independently weighted contribution to confidence."""
    name: str
    weight: float
    predicate: Callable[[ScoringContext], bool]


@dataclass(frozen=True)
class AntiPattern:
    """Negative signal; full penalty in the title, half in the body window."""
    name: str
    pattern: re.Pattern
    penalty: float


MIN_REASONABLE_AMOUNT = 100_000
MAX_REASONABLE_AMOUNT = 5_000_000_000
UNREASONABLE_AMOUNT = 10_000_000_000

SIGNAL_RULES: tuple[Rule, ...] = (
    Rule("title_strong_trigger", 0.35, lambda c: any_match(TITLE_STRONG_TRIGGERS, c.title)),
    Rule("title_moderate_trigger", 0.20, lambda c: any_match(MODERATE_TRIGGERS, c.title)),
    Rule("title_proximity", 0.15, lambda c: PROXIMITY_PATTERN.search(c.title) is not None),
    Rule("body_trigger", 0.10, lambda c: any_match(MODERATE_TRIGGERS, c.text)),
    Rule("amount_near_trigger", 0.10, lambda c: AMOUNT_NEAR_TRIGGER.search(c.text) is not None),
    Rule("has_amount", 0.10, lambda c: c.amount is not None),
    Rule(
        "reasonable_amount", 0.05,
        lambda c: c.amount is not None and MIN_REASONABLE_AMOUNT <= c.amount <= MAX_REASONABLE_AMOUNT,
    ),
    # Market caps and revenue figures, not rounds
    Rule("unreasonable_amount", -0.25, lambda c: c.amount is not None and c.amount > UNREASONABLE_AMOUNT),
    Rule("has_stage", 0.10, lambda c: bool(c.stage)),
    Rule("has_investors", 0.08, lambda c: len(c.investors) > 0),
    Rule("has_lead_investor", 0.04, lambda c: bool(c.lead_investor)),
    Rule("has_country", 0.05, lambda c: bool(c.country)),
    Rule("company_before_trigger", 0.08, lambda c: COMPANY_BEFORE_TRIGGER.search(c.title) is not None),
)


def _anti(name: str, pattern: str, penalty: float, flags: int = re.I) -> AntiPattern:
    return AntiPattern(name, re.compile(pattern, flags), penalty)


ANTI_PATTERNS: tuple[AntiPattern, ...] = (
    # Listicles / roundups
    _anti("listicle", r"\b\d+\s+(?:trends?|tips?|ways?|signs?|things?|reasons?|startups?|sectors?|companies|deals)\b", -0.25),
    _anti("top_n", r"\btop\s+\d+\b", -0.20),
    _anti("weekly_digest", r"\bweek(?:ly|'s|s)?\s+(?:funding|round|recap|digest|\d+|top)\b", -0.30),
    _anti("roundup", r"\bround[- ]?up\b", -0.30),
    _anti("best_of", r"\bbest\s+of\b", -0.15),
    _anti("biggest_rounds", r"\bbiggest\s+funding\s+rounds?\b", -0.25),
    _anti("need_to_know", r"\bneed\s+to\s+know\b", -0.15),
    _anti("most_promising", r"\bmost\s+promising\b", -0.15),
    _anti("keep_an_eye", r"\bkeep\s+an?\s+eye\s+on\b", -0.15),
    # Market analysis / macro
    _anti("global_vc", r"\bglobal\s+vc\b", -0.20),
    _anti("market_report", r"\bmarket\s+(?:report|analysis|overview|recap|roundup)\b", -0.20),
    _anti("funding_trends", r"\bfunding\s+(?:landscape|trends?|recap|report|roundup|review|overview|growth)\b", -0.25),
    _anti("quarterly_report", r"\bquarterly\s+(?:report|review|roundup)\b", -0.20),
    _anti("state_of", r"\bstate\s+of\s+(?:vc|venture|funding|startups?)\b", -0.20),
    _anti("fading_away", r"\bfading\s+away\b", -0.20),
    _anti("tech_ecosystem", r"\btech\s+ecosystem\b", -0.15),
    _anti("broad_momentum", r"\bbroad\s+momentum\b", -0.15),
    # Opinion / career / advice
    _anti("how_to", r"\bhow\s+to\b", -0.15),
    _anti("why_you", r"\bwhy\s+(?:you|we|i|founders?)\b", -0.10),
    _anti("q_and_a", r"\bQ&A\b", -0.15),
    _anti("interview", r"\binterview\b", -0.10),
    _anti("opinion", r"\bopinion\b", -0.15),
    _anti("battle_begins", r"\bbattle\s+begins\b", -0.10),
    # Fund formation (a VC raising its own fund)
    _anti("new_fund", r"\bjust\s+raised\s+.*\bnew\s+fund\b", -0.30),
    _anti("fund_closes_fund", r"\b(?:fund|partners?|ventures?)\s+(?:closes?|raises?)\s+.*\bfund\b", -0.25),
    _anti("fund_numeral", r"\bfund\s+(?:i{1,3}|iv|v|vi|[1-5])\b", -0.20),
    _anti("fund_to_back", r"\braises?\s+.*\bfund\s+to\s+back\b", -0.30),
    # Conference / event
    _anti("summit_tickets", r"\bsummit\b.*\b(?:tickets?|join|register)\b", -0.25),
    _anti("early_bird_tickets", r"\bearly\s+bird\s+tickets?\b", -0.35),
    _anti("joins_summit", r"\bjoins\s+the\b.*\bsummit\b", -0.30),
    # Public company mentions
    _anti("trillion_company", r"\$\d+T\s+company\b", -0.35),
    _anti("startup_of_the_week", r"\bstartup\s+of\s+the\s+(?:week|month|year)\b", -0.25),
    _anti("heres_where", r"\bhere'?s\s+where\b", -0.15),
    _anti("most_active", r"\bmost[- ]active\b", -0.20),
    # Public markets / M&A
    _anti("ipo", r"\bipo\b", -0.40),
    _anti("acquisition", r"\bacquir(?:es?|ed|ing|ition)\b", -0.35),
    _anti("merger", r"\bmerger\b", -0.25),
    # Government / policy
    _anti("minister", r"\bminister\b", -0.25),
    _anti("government_push", r"\bgovernment\b.*\bpush", -0.20),
    # Newsletter digest headings
    _anti("ticker_digest", r"^#?\s*(?:startup)?ticker\b", -0.35),
    _anti("plus_digest", r"^\+{3}", -0.30),
)

# Company names that look like an investor/fund (fund-closing announcements)
VC_FUND_NAME = re.compile(
    r"\b(?:venture\s+partners|capital|fund\b|a16z|andreessen|sequoia|benchmark|accel|greylock|kleiner)",
    re.I,
)
STARTUP_WORD = re.compile(r"\bstartup\b", re.I)

# =============================================================================
# FIELD EXTRACTION PATTERNS
# =============================================================================

_NUM = r"(?P<num>\d[\d,.]*)"
_CODES = r"(?:USD|EUR|GBP|CHF|SEK|NOK|DKK|PLN)"

AMOUNT_PATTERNS = [
    re.compile(rf"\$\s*{_NUM}\s*(?P<unit>billion|million|mn|bn|m|b|k)\b", re.I),
    re.compile(rf"(?:EUR|€)\s*{_NUM}\s*(?P<unit>billion|million|mn|bn|m|b|k)?\b", re.I),
    re.compile(rf"(?:GBP|£)\s*{_NUM}\s*(?P<unit>billion|million|mn|bn|m|b|k)?\b", re.I),
    re.compile(rf"(?:CHF|SEK|NOK|DKK|PLN)\s*{_NUM}\s*(?P<unit>billion|million|mn|bn|m|b|k)?\b", re.I),
    re.compile(rf"{_NUM}\s*(?P<unit>billion|million|mn|bn|m|b)\s*(?:dollars?|euros?|pounds?|francs?|{_CODES})", re.I),
    re.compile(rf"{_NUM}\s*(?P<unit>Mio\.?|Millionen?|Mrd\.?|Milliarden?)\s*(?:EUR|Euro|USD|Dollar|GBP|CHF)", re.I),
]

# Checked against the whole amount match, first hit wins; default USD
CURRENCY_HINTS = [
    (re.compile(r"€|EUR|euro", re.I), "EUR"),
    (re.compile(r"£|GBP|pound", re.I), "GBP"),
    (re.compile(r"CHF|franc", re.I), "CHF"),
    (re.compile(r"SEK", re.I), "SEK"),
    (re.compile(r"NOK", re.I), "NOK"),
    (re.compile(r"DKK", re.I), "DKK"),
    (re.compile(r"PLN", re.I), "PLN"),
]

MULTIPLIERS = {
    "k": 1_000,
    "m": 1_000_000,
    "mn": 1_000_000,
    "million": 1_000_000,
    "mio": 1_000_000,
    "mio.": 1_000_000,
    "millionen": 1_000_000,
    "b": 1_000_000_000,
    "bn": 1_000_000_000,
    "billion": 1_000_000_000,
    "mrd": 1_000_000_000,
    "mrd.": 1_000_000_000,
    "milliarden": 1_000_000_000,
    "milliarde": 1_000_000_000,
}

# Static FX table (USD per unit)
CURRENCY_TO_USD = {
    "USD": 1.0,
    "EUR": 1.08,
    "GBP": 1.27,
    "CHF": 1.12,
    "SEK": 0.096,
    "NOK": 0.094,
    "DKK": 0.145,
    "PLN": 0.25,
}


def to_usd(amount: Optional[float], currency: Optional[str]) -> Optional[float]:
    """Convert with the static FX table; unknown currencies pass through at 1.0."""
    if amount is None:
        return None
    return amount * CURRENCY_TO_USD.get((currency or "USD").upper(), 1.0)


# First match wins: specific before general ("Pre-Seed" before "Seed")
STAGE_PATTERNS = [
    (re.compile(r"\bpre[- ]?seed\b", re.I), "Pre-Seed"),
    (re.compile(r"\bseed\s+(?:round|funding|extension)\b", re.I), "Seed"),
    (re.compile(r"\bseed\b", re.I), "Seed"),
    (re.compile(r"\bseries\s+a\+?\b", re.I), "Series A"),
    (re.compile(r"\bseries\s+b\+?\b", re.I), "Series B"),
    (re.compile(r"\bseries\s+c\+?\b", re.I), "Series C"),
    (re.compile(r"\bseries\s+d\+?\b", re.I), "Series D"),
    (re.compile(r"\bseries\s+[e-h]\+?\b", re.I), "Series E+"),
    (re.compile(r"\bbr?idge\s+round\b", re.I), "Bridge"),
    (re.compile(r"\bgrowth\s+(?:round|funding|equity)\b", re.I), "Growth"),
    (re.compile(r"\bdebt\s+(?:round|funding|financing)\b", re.I), "Debt"),
    (re.compile(r"\bgrant\b", re.I), "Grant"),
]

INVESTOR_PATTERNS = [
    re.compile(r"\bled\s+by\s+([^,.]+(?:,\s*[^,.]+)*)", re.I),
    re.compile(r"\bwith\s+participation\s+(?:from|of)\s+([^.]+)", re.I),
    re.compile(r"\bbacked\s+by\s+([^.]+)", re.I),
    re.compile(r"\binvestors?\s+(?:include|including)\s+([^.]+)", re.I),
    re.compile(r"\bjoined\s+by\s+([^.]+)", re.I),
]
LEAD_PHRASE = re.compile(r"\bled\s+by\b", re.I)
INVESTOR_SPLIT = re.compile(r",\s*|\s+and\s+", re.I)
# A captured name runs into the next clause ("Acme with participation from ...")
INVESTOR_CLAUSE_END = re.compile(
    r"\s+(?:with|alongside|as\s+well\s+as|to|for|in|at|from|who|which|that)\s+.*$",
    re.I,
)
INVESTOR_STOPWORDS = re.compile(
    r"\b(?:the|a|an|other|various|several|multiple|undisclosed|existing|new|additional|further|angel)\b",
    re.I,
)

EUROPEAN_COUNTRIES = [
    (re.compile(r"\bgerman[ys]?\b|\bberlin\b|\bmunich\b|\bhamburg\b|\bfrankfurt\b|\bdüsseldorf\b", re.I), "Germany"),
    (re.compile(r"\bfrance\b|\bfrench\b|\bparis\b|\blyon\b", re.I), "France"),
    (re.compile(r"\buk\b|\bunited\s+kingdom\b|\bbritish\b|\blondon\b|\bmanchester\b|\bedinburgh\b", re.I), "UK"),
    (re.compile(r"\bspain\b|\bspanish\b|\bmadrid\b|\bbarcelona\b", re.I), "Spain"),
    (re.compile(r"\bitaly\b|\bitalian\b|\bmilan\b|\brome\b", re.I), "Italy"),
    (re.compile(r"\bnetherlands\b|\bdutch\b|\bamsterdam\b|\brotterdam\b", re.I), "Netherlands"),
    (re.compile(r"\bsweden\b|\bswedish\b|\bstockholm\b", re.I), "Sweden"),
    (re.compile(r"\bdenmark\b|\bdanish\b|\bcopenhagen\b", re.I), "Denmark"),
    (re.compile(r"\bnorway\b|\bnorwegian\b|\boslo\b", re.I), "Norway"),
    (re.compile(r"\bfinland\b|\bfinnish\b|\bhelsinki\b", re.I), "Finland"),
    (re.compile(r"\bswitzerland\b|\bswiss\b|\bzurich\b|\bgeneva\b", re.I), "Switzerland"),
    (re.compile(r"\baustria\b|\baustrian\b|\bvienna\b", re.I), "Austria"),
    (re.compile(r"\bbelgium\b|\bbelgian\b|\bbrussels\b", re.I), "Belgium"),
    (re.compile(r"\bportugal\b|\bportuguese\b|\blisbon\b", re.I), "Portugal"),
    (re.compile(r"\bireland\b|\birish\b|\bdublin\b", re.I), "Ireland"),
    (re.compile(r"\bpoland\b|\bpolish\b|\bwarsaw\b|\bkrakow\b", re.I), "Poland"),
    (re.compile(r"\bczech\b|\bprague\b", re.I), "Czech Republic"),
    (re.compile(r"\bromania\b|\bromanian\b|\bbucharest\b", re.I), "Romania"),
    (re.compile(r"\bestonia\b|\bestonian\b|\btallinn\b", re.I), "Estonia"),
    (re.compile(r"\blatvia\b|\blatvian\b|\briga\b", re.I), "Latvia"),
    (re.compile(r"\blithuania\b|\blithuanian\b|\bvilnius\b", re.I), "Lithuania"),
    (re.compile(r"\bhungary\b|\bhungarian\b|\bbudapest\b", re.I), "Hungary"),
    (re.compile(r"\bgreece\b|\bgreek\b|\bathens\b", re.I), "Greece"),
    (re.compile(r"\bcroatia\b|\bcroatian\b|\bzagreb\b", re.I), "Croatia"),
    (re.compile(r"\bbulgaria\b|\bbulgarian\b|\bsofia\b", re.I), "Bulgaria"),
]

# =============================================================================
# COMPANY NAME HEURISTICS
# =============================================================================

_DESCRIPTOR_WORDS = (
    r"startup|fintech|healthtech|edtech|proptech|insurtech|climatetech|saas|ai|"
    r"company|firm|scaleup|scale-up|platform"
)

# Descriptive lead-ins: "German AI startup Foo", "London-based Foo", "The Foo"
DESCRIPTOR_PREFIX = re.compile(rf"^.*?\b(?:{_DESCRIPTOR_WORDS})\s+", re.I)
BASED_PREFIX = re.compile(r"^.*?-based\s+", re.I)
ARTICLE_PREFIX = re.compile(r"^(?:the|a|an)\s+", re.I)

LEADS_FOR_COMPANY = re.compile(
    rf"\bleads?\s+[$€£]?[\d,.]+\s*{_UNIT}\s+(?:\w+\s+)?(?:round|funding|investment)\s+(?:for|in|into)\s+(.+)",
    re.I,
)
TRIGGER_VERB = re.compile(
    r"\s+(?:raises?|secures?|closes?|gets?|lands?|nabs?|bags?|announces?|receives?|leads?)\s+",
    re.I,
)
ROUND_FOR_COMPANY = re.compile(r"(?:round|funding|investment)\s+(?:for|in|into)\s+(.+)", re.I)
COMMA_COMPANY = re.compile(r"^([A-Z][a-zA-Z\-']+(?:\s+[A-Z][a-zA-Z\-']+){0,2}),")
# Trailing clause after a company name taken from the end of a title
NAME_CLAUSE_END = re.compile(r"[,;–—|]|\s+(?:to|as|in|with|that|which)\s+", re.I)
# Title section delimiters ("Fintech weekly: Foo raises ...")
TITLE_DELIMITER = re.compile(r"\s[-–—|]\s|:|\|")

MAX_COMPANY_NAME_LENGTH = 80

EXCERPT_PATTERN = re.compile(r".{0,100}(?:raises?|secures?|funding|round|series).{0,100}", re.I)
