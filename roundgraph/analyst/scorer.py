"""
Deterministic funding scorer.

Gate -> field extraction -> rule evaluation -> acceptance checks. Every
"not a funding article" outcome is a None return, never an exception.

Usage:
    from roundgraph.analyst.scorer import extract

    extraction = extract("Sunbird raises $12M Series A led by Acme Ventures", body)
    if extraction:
        print(extraction.confidence, extraction.fired_signals)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .schemas import FundingExtraction
from .signals import (
    ANTI_PATTERNS,
    ARTICLE_PREFIX,
    BASED_PREFIX,
    COMMA_COMPANY,
    CURRENCY_HINTS,
    DESCRIPTOR_PREFIX,
    EUROPEAN_COUNTRIES,
    EXCERPT_PATTERN,
    AMOUNT_PATTERNS,
    INVESTOR_CLAUSE_END,
    INVESTOR_PATTERNS,
    INVESTOR_SPLIT,
    INVESTOR_STOPWORDS,
    LEAD_PHRASE,
    LEADS_FOR_COMPANY,
    MAX_COMPANY_NAME_LENGTH,
    MODERATE_TRIGGERS,
    MULTIPLIERS,
    NAME_CLAUSE_END,
    ROUND_FOR_COMPANY,
    SIGNAL_RULES,
    STAGE_PATTERNS,
    STARTUP_WORD,
    TITLE_DELIMITER,
    TITLE_STRONG_TRIGGERS,
    TRIGGER_VERB,
    VC_FUND_NAME,
    WEAK_TRIGGERS,
    ScoringContext,
    any_match,
    to_usd,
)
from ..config.settings import settings

logger = logging.getLogger(__name__)

_TAG = re.compile(r"<[^>]+>")
_WS = re.compile(r"\s+")


@dataclass
class ExtractedFields:
    """Fields the scorer weighs (presence and plausibility only)."""
    amount: Optional[float] = None
    stage: Optional[str] = None
    investors: List[str] = field(default_factory=list)
    lead_investor: Optional[str] = None
    country: Optional[str] = None


@dataclass(frozen=True)
class FiredSignal:
    name: str
    weight: float

    def __str__(self) -> str:
        return f"{self.name}({self.weight:+.2f})"


# =============================================================================
# TEXT PREP / GATE
# =============================================================================

def clean_text(title: str, content: Optional[str]) -> str:
    """Title + body with HTML tags removed and whitespace collapsed."""
    title = (title or "").strip()
    body = _TAG.sub(" ", content or "")
    # Title is its own sentence; keeps "led by X" from running into the body
    joiner = " " if not title or title[-1] in ".!?:" else ". "
    return _WS.sub(" ", f"{title}{joiner}{body}").strip()


def has_any_funding_signal(title: str, text: str) -> bool:
    """Cheap gate: strong title trigger, or moderate/weak trigger anywhere in text."""
    return (
        any_match(TITLE_STRONG_TRIGGERS, title)
        or any_match(MODERATE_TRIGGERS, text)
        or any_match(WEAK_TRIGGERS, text)
    )


# =============================================================================
# FIELD EXTRACTION
# =============================================================================

def parse_number(raw: str) -> Optional[float]:
    """
    Parse "12", "12.5", "1,000", "1,5" (German decimal comma), "1.234.567".

    Returns:
        float or None if nothing numeric remains
    """
    s = raw.strip().rstrip(".,")
    if not s:
        return None
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        head, _, tail = s.rpartition(",")
        if s.count(",") == 1 and 1 <= len(tail) <= 2:
            s = f"{head}.{tail}"
        else:
            s = s.replace(",", "")
    elif s.count(".") > 1:
        s = s.replace(".", "")
    try:
        return float(s)
    except ValueError:
        return None


def parse_amount(text: str) -> Optional[Tuple[float, str]]:
    """
    First amount mention in text.

    Bare numbers below 1000 with no unit are read as millions
    ("€40 funding" -> 40_000_000).

    Returns:
        (amount in original currency, ISO currency code) or None
    """
    for pattern in AMOUNT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue

        num = parse_number(match.group("num"))
        if num is None:
            continue

        currency = "USD"
        for hint, code in CURRENCY_HINTS:
            if hint.search(match.group(0)):
                currency = code
                break

        unit = (match.group("unit") or "").lower()
        multiplier = MULTIPLIERS.get(unit, 1)
        amount = num * 1_000_000 if multiplier == 1 and num < 1000 else num * multiplier
        return amount, currency
    return None


def extract_stage(text: str) -> Optional[str]:
    """First-match-wins over STAGE_PATTERNS."""
    for pattern, stage in STAGE_PATTERNS:
        if pattern.search(text):
            return stage
    return None


def _strip_descriptors(name: str) -> str:
    """Drop "German AI startup", "London-based", "The" lead-ins without emptying the name."""
    for pattern in (DESCRIPTOR_PREFIX, BASED_PREFIX, ARTICLE_PREFIX):
        while True:
            stripped = pattern.sub("", name, count=1).strip()
            if not stripped or stripped == name:
                break
            name = stripped
    return name


def _plausible(name: str) -> bool:
    return 0 < len(name) < MAX_COMPANY_NAME_LENGTH


def extract_company_name(title: str) -> str:
    """
    Company name from the title via ordered heuristics:

    1. "[Investor] leads $Xm round for [Company]"
    2. "[Company] raises/secures/closes ..."
    3. "$Xm round for [Company]"
    4. "[Company], a ..." comma fallback
    5. first three words
    """
    title = title.strip()

    match = LEADS_FOR_COMPANY.search(title)
    if match:
        name = _strip_descriptors(match.group(1).strip())
        name = NAME_CLAUSE_END.split(name)[0].strip()
        if _plausible(name):
            return name

    match = TRIGGER_VERB.search(title)
    if match and match.start() > 0:
        name = title[:match.start()].strip()
        name = TITLE_DELIMITER.split(name)[-1].strip()
        name = _strip_descriptors(name)
        if _plausible(name):
            return name

    match = ROUND_FOR_COMPANY.search(title)
    if match:
        name = _strip_descriptors(match.group(1).strip())
        name = NAME_CLAUSE_END.split(name)[0].strip()
        if _plausible(name):
            return name

    match = COMMA_COMPANY.match(title)
    if match:
        return match.group(1)

    return " ".join(title.split()[:3])


def extract_investors(text: str) -> Tuple[List[str], Optional[str]]:
    """
    Investor names from "led by", "with participation from", "backed by",
    "investors include" and "joined by" phrasing.

    Returns:
        (unique investors in mention order, lead investor or None)
    """
    investors: List[str] = []
    lead: Optional[str] = None

    for pattern in INVESTOR_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue

        names = []
        for part in INVESTOR_SPLIT.split(match.group(1)):
            part = part.strip()
            name = INVESTOR_CLAUSE_END.sub("", f" {part}").strip()
            if 1 < len(name) < 80 and not INVESTOR_STOPWORDS.search(name):
                names.append(name)
            if name != part:
                # Later parts belong to the next clause
                break

        if names:
            if lead is None and LEAD_PHRASE.search(match.group(0)):
                lead = names[0]
            investors.extend(names)

    return list(dict.fromkeys(investors)), lead


def extract_country(text: str) -> Optional[str]:
    for pattern, country in EUROPEAN_COUNTRIES:
        if pattern.search(text):
            return country
    return None


def extract_excerpt(text: str) -> str:
    match = EXCERPT_PATTERN.search(text)
    return match.group(0).strip() if match else text[:200]


# =============================================================================
# SCORING
# =============================================================================

def evaluate_signals(context: ScoringContext) -> List[FiredSignal]:
    """Evaluate the positive rule table and the anti-pattern table into a list."""
    fired = [FiredSignal(rule.name, rule.weight) for rule in SIGNAL_RULES if rule.predicate(context)]

    window = context.anti_window
    for anti in ANTI_PATTERNS:
        if anti.pattern.search(context.title):
            fired.append(FiredSignal(f"anti_title:{anti.name}", anti.penalty))
        elif anti.pattern.search(window):
            fired.append(FiredSignal(f"anti_body:{anti.name}", anti.penalty * 0.5))
    return fired


def score(title: str, body: str, fields: Optional[ExtractedFields] = None) -> Tuple[float, List[str]]:
    """
    Confidence that (title, body) announces one specific funding round.

    Returns:
        (confidence in [0, 1] rounded to 2 decimals, fired signal labels like "has_amount(+0.10)")
    """
    fields = fields or ExtractedFields()
    context = ScoringContext(
        title=title,
        text=body,
        amount=fields.amount,
        stage=fields.stage,
        investors=tuple(fields.investors),
        lead_investor=fields.lead_investor,
        country=fields.country,
    )
    fired = evaluate_signals(context)
    total = sum(s.weight for s in fired)
    confidence = round(max(0.0, min(1.0, total)), 2)
    return confidence, [str(s) for s in fired]


def extract(
    title: str,
    content: Optional[str],
    min_confidence: Optional[float] = None,
    weak_evidence_confidence: Optional[float] = None,
) -> Optional[FundingExtraction]:
    """
    Deterministic extraction.

    Args:
        title: Article title
        content: Article body (HTML allowed)
        min_confidence: Absolute floor (default settings.min_confidence)
        weak_evidence_confidence: Floor when neither a strong title trigger
            nor an amount was found (default settings.weak_evidence_confidence)

    Returns:
        FundingExtraction, or None for no signal / below threshold / fund-like name
    """
    min_confidence = settings.min_confidence if min_confidence is None else min_confidence
    if weak_evidence_confidence is None:
        weak_evidence_confidence = settings.weak_evidence_confidence

    title = (title or "").strip()
    text = clean_text(title, content)

    if not has_any_funding_signal(title, text):
        return None

    company_name = extract_company_name(title)
    parsed = parse_amount(text)
    amount, currency = parsed if parsed else (None, "USD")
    stage = extract_stage(text)
    investors, lead_investor = extract_investors(text)
    country = extract_country(text)

    confidence, signals = score(title, text, ExtractedFields(
        amount=amount,
        stage=stage,
        investors=investors,
        lead_investor=lead_investor,
        country=country,
    ))

    if confidence < min_confidence:
        logger.debug(f"Below threshold ({confidence:.2f}): {title[:80]}")
        return None

    if amount is None and confidence < weak_evidence_confidence and not any_match(TITLE_STRONG_TRIGGERS, title):
        logger.debug(f"Weak evidence ({confidence:.2f}, no amount): {title[:80]}")
        return None

    if VC_FUND_NAME.search(company_name) and not STARTUP_WORD.search(title):
        logger.debug(f"Fund-like company name rejected: {company_name}")
        return None

    return FundingExtraction(
        company_name=company_name,
        amount=amount,
        currency=currency,
        amount_usd=to_usd(amount, currency),
        stage=stage,
        investors=investors,
        lead_investor=lead_investor,
        country=country,
        confidence=confidence,
        fired_signals=signals,
        excerpt=extract_excerpt(text),
    )
