"""
Round grouper - cluster per-article extractions into real-world funding events.

Pairwise similarity is a weighted sum of seven signals, each capped at its
own weight:

    company name   0.40  exact 0.40 / substring 0.35 / token overlap <= 0.30
    time proximity 0.15  linear decay to 0 across the window (14 days)
    amount         0.15  full at min/max >= 0.80, partial 0.50-0.80
    stage          0.10  exact
    lead investor  0.10  exact or substring (normalized)
    country        0.05  exact
    investors      0.05  overlap share of the smaller set

Pairs scoring >= 0.55 merge; clustering is single-link (union-find), so
A~B and B~C put A, B and C in one group even when A~C alone would not pass.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from .normalizer import normalize_company, normalize_investor, normalize_stage
from .schemas import ArticleRef, GroupCandidate, GroupedRound
from ..config.settings import settings

logger = logging.getLogger(__name__)

NAME_EXACT = 0.40
NAME_SUBSTRING = 0.35
NAME_TOKEN_OVERLAP = 0.30
TIME_WEIGHT = 0.15
AMOUNT_WEIGHT = 0.15
STAGE_WEIGHT = 0.10
LEAD_WEIGHT = 0.10
COUNTRY_WEIGHT = 0.05
INVESTOR_OVERLAP_WEIGHT = 0.05

AMOUNT_FULL_RATIO = 0.80
AMOUNT_PARTIAL_RATIO = 0.50

MIN_TOKEN_LENGTH = 3

# Marketing noise around names in headlines ("London's Foo", "Meet Foo", "Foo raises ...")
NOISE_PREFIXES = [
    re.compile(r"^[\w\-]+['’]s\s+", re.I),
    re.compile(r"^(?:\w+\s+)?startup\s+", re.I),
    re.compile(r"^how\s+this\s+[\w\-]+\s+", re.I),
    re.compile(r"^meet\s+", re.I),
    re.compile(r"^the\s+", re.I),
]
NOISE_SUFFIX = re.compile(
    r"\s+(?:raises?|raised|secures?|secured|collects?|collected|closes?|closed|launches?|launched)\b.*$",
    re.I,
)
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


# =============================================================================
# NAME CLEANING
# =============================================================================

def clean_name(name: Optional[str]) -> str:
    """
    Strip headline noise, lowercase, keep alphanumerics (space separated).

    Examples:
        >>> clean_name("London's Sunbird raises $12M")
        'sunbird'
        >>> clean_name("Meet Acme Robotics")
        'acme robotics'
    """
    if not name:
        return ""
    text = name.strip()
    changed = True
    while changed:
        changed = False
        for pattern in NOISE_PREFIXES:
            stripped = pattern.sub("", text, count=1)
            if stripped and stripped != text:
                text = stripped
                changed = True
    text = NOISE_SUFFIX.sub("", text)
    return _NON_ALNUM.sub(" ", text.lower()).strip()


def name_tokens(name: Optional[str]) -> set[str]:
    return {t for t in clean_name(name).split() if len(t) >= MIN_TOKEN_LENGTH}


def _compact(name: Optional[str]) -> str:
    return clean_name(name).replace(" ", "")


# =============================================================================
# PAIRWISE SCORING
# =============================================================================

def _within_window(a: GroupCandidate, b: GroupCandidate, window_days: int) -> bool:
    return abs(a.seen_at - b.seen_at) <= timedelta(days=window_days)


def can_match(a: GroupCandidate, b: GroupCandidate, window_days: Optional[int] = None) -> bool:
    """Cheap pre-filter: inside the time window and some coarse name overlap."""
    window_days = settings.group_window_days if window_days is None else window_days
    if not _within_window(a, b, window_days):
        return False

    name_a, name_b = a.extraction.company_name, b.extraction.company_name
    if normalize_company(name_a) and normalize_company(name_a) == normalize_company(name_b):
        return True
    if name_tokens(name_a) & name_tokens(name_b):
        return True
    ca, cb = _compact(name_a), _compact(name_b)
    if len(ca) >= MIN_TOKEN_LENGTH and len(cb) >= MIN_TOKEN_LENGTH:
        return ca in cb or cb in ca
    return False


def name_similarity(name_a: str, name_b: str) -> float:
    """Highest applicable tier only: exact 0.40, substring 0.35, token overlap up to 0.30."""
    norm_a, norm_b = normalize_company(name_a), normalize_company(name_b)
    ca, cb = _compact(name_a), _compact(name_b)
    if (norm_a and norm_a == norm_b) or (ca and ca == cb):
        return NAME_EXACT
    if len(ca) >= MIN_TOKEN_LENGTH and len(cb) >= MIN_TOKEN_LENGTH and (ca in cb or cb in ca):
        return NAME_SUBSTRING
    ta, tb = name_tokens(name_a), name_tokens(name_b)
    if ta and tb:
        shared = ta & tb
        if shared:
            return NAME_TOKEN_OVERLAP * len(shared) / max(len(ta), len(tb))
    return 0.0


def time_similarity(a: datetime, b: datetime, window_days: int) -> float:
    days = abs((a - b).total_seconds()) / 86400
    if days >= window_days:
        return 0.0
    return TIME_WEIGHT * (1 - days / window_days)


def amount_similarity(a: Optional[float], b: Optional[float]) -> float:
    if not a or not b or a <= 0 or b <= 0:
        return 0.0
    ratio = min(a, b) / max(a, b)
    if ratio >= AMOUNT_FULL_RATIO:
        return AMOUNT_WEIGHT
    if ratio >= AMOUNT_PARTIAL_RATIO:
        span = AMOUNT_FULL_RATIO - AMOUNT_PARTIAL_RATIO
        return AMOUNT_WEIGHT * (ratio - AMOUNT_PARTIAL_RATIO) / span
    return 0.0


def lead_similarity(a: Optional[str], b: Optional[str]) -> float:
    na, nb = normalize_investor(a), normalize_investor(b)
    if not na or not nb:
        return 0.0
    if na == nb or na in nb or nb in na:
        return LEAD_WEIGHT
    return 0.0


def investor_overlap(a: Iterable[str], b: Iterable[str]) -> float:
    sa = {normalize_investor(i) for i in a if normalize_investor(i)}
    sb = {normalize_investor(i) for i in b if normalize_investor(i)}
    if not sa or not sb:
        return 0.0
    return INVESTOR_OVERLAP_WEIGHT * len(sa & sb) / min(len(sa), len(sb))


def similarity(a: GroupCandidate, b: GroupCandidate, window_days: Optional[int] = None) -> float:
    """Weighted 7-signal similarity in [0, 1]."""
    window_days = settings.group_window_days if window_days is None else window_days
    ea, eb = a.extraction, b.extraction

    total = name_similarity(ea.company_name, eb.company_name)
    total += time_similarity(a.seen_at, b.seen_at, window_days)
    total += amount_similarity(ea.amount_usd, eb.amount_usd)
    if ea.stage is not None and ea.stage == eb.stage:
        total += STAGE_WEIGHT
    total += lead_similarity(ea.lead_investor, eb.lead_investor)
    if ea.country and eb.country and ea.country.strip().lower() == eb.country.strip().lower():
        total += COUNTRY_WEIGHT
    total += investor_overlap(ea.investors, eb.investors)
    return min(1.0, total)


# =============================================================================
# CLUSTERING
# =============================================================================

class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, i: int, j: int) -> None:
        ri, rj = self.find(i), self.find(j)
        if ri != rj:
            # Lower index stays root so cluster order follows input time order
            if rj < ri:
                ri, rj = rj, ri
            self.parent[rj] = ri


def _first_non_null(members: Sequence[GroupCandidate], field: str):
    for m in members:
        value = getattr(m.extraction, field)
        if value is not None and value != "":
            return value
    return None


def _build_round(members: List[GroupCandidate], high_confidence: float) -> GroupedRound:
    by_time = sorted(members, key=lambda m: m.seen_at)
    by_confidence = sorted(members, key=lambda m: m.extraction.confidence, reverse=True)
    primary = by_confidence[0]

    trusted = [m for m in by_confidence if m.extraction.confidence >= high_confidence]
    if trusted:
        best_name = min(trusted, key=lambda m: len(m.extraction.company_name.strip())).extraction.company_name.strip()
    else:
        best_name = primary.extraction.company_name.strip()

    earliest = by_time[0]
    key = (
        f"{normalize_company(earliest.extraction.company_name)}::"
        f"{normalize_stage(earliest.extraction.stage)}::"
        f"{earliest.seen_at.strftime('%Y-%m-%d')}"
    )

    sources: List[ArticleRef] = []
    seen_urls = set()
    for m in by_confidence:
        if m.source.url in seen_urls:
            continue
        seen_urls.add(m.source.url)
        sources.append(m.source.model_copy(update={"confidence": m.extraction.confidence}))

    all_investors: List[str] = []
    seen_investors = set()
    for m in by_confidence:
        for inv in m.extraction.investors:
            norm = normalize_investor(inv)
            if norm and norm not in seen_investors:
                seen_investors.add(norm)
                all_investors.append(inv)

    ingested = [m.ingested_at for m in members if m.ingested_at is not None]

    return GroupedRound(
        key=key,
        best_company_name=best_name,
        amount_usd=primary.extraction.amount_usd,
        stage=_first_non_null(by_confidence, "stage"),
        lead_investor=_first_non_null(by_confidence, "lead_investor"),
        country=_first_non_null(by_confidence, "country"),
        all_investors=all_investors,
        source_count=len(seen_urls),
        max_confidence=primary.extraction.confidence,
        sources=sources,
        first_seen=earliest.seen_at,
        last_seen=by_time[-1].seen_at,
        ingested_at=max(ingested) if ingested else None,
    )


def group(
    candidates: Sequence[GroupCandidate],
    threshold: Optional[float] = None,
    window_days: Optional[int] = None,
    high_confidence: Optional[float] = None,
) -> List[GroupedRound]:
    """
    Cluster extractions into grouped rounds.

    Args:
        candidates: Per-article extractions with their source and timestamp
        threshold: Merge threshold (default settings.group_merge_threshold)
        window_days: Time window (default settings.group_window_days)
        high_confidence: Minimum member confidence to contribute the display
            name (default settings.group_high_confidence)

    Returns:
        One GroupedRound per cluster, ordered by first_seen
    """
    threshold = settings.group_merge_threshold if threshold is None else threshold
    window_days = settings.group_window_days if window_days is None else window_days
    high_confidence = settings.group_high_confidence if high_confidence is None else high_confidence

    items = sorted(candidates, key=lambda c: c.seen_at)
    if not items:
        return []

    uf = _UnionFind(len(items))
    window = timedelta(days=window_days)
    for i in range(len(items)):
        for j in range(i + 1, len(items)):
            # Sorted by time: every later j is outside the window too
            if items[j].seen_at - items[i].seen_at > window:
                break
            if uf.find(i) == uf.find(j):
                continue
            if not can_match(items[i], items[j], window_days):
                continue
            if similarity(items[i], items[j], window_days) >= threshold:
                uf.union(i, j)

    clusters: dict[int, List[GroupCandidate]] = {}
    for idx, item in enumerate(items):
        clusters.setdefault(uf.find(idx), []).append(item)

    rounds = [_build_round(members, high_confidence) for members in clusters.values()]
    logger.debug(f"Grouped {len(items)} extractions into {len(rounds)} rounds")
    return rounds


SORT_FIELDS = ("last_seen", "amount", "confidence", "sources", "company")


def sort_rounds(rounds: List[GroupedRound], sort_by: str = "last_seen", descending: bool = True) -> List[GroupedRound]:
    """Order grouped rounds for display; unknown sort keys fall back to last_seen."""
    keys = {
        "amount": lambda r: r.amount_usd or 0,
        "confidence": lambda r: r.max_confidence,
        "sources": lambda r: r.source_count,
        "company": lambda r: r.best_company_name.lower(),
        "last_seen": lambda r: r.last_seen,
    }
    return sorted(rounds, key=keys.get(sort_by, keys["last_seen"]), reverse=descending)
