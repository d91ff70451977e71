"""
Pydantic schemas for funding extraction and round grouping.

FundingExtraction is the per-article record shared by the deterministic
scorer and the oracle-backed extractor. LLMFundingResponse is the
response model handed to Instructor; it is converted to a
FundingExtraction by analyst.oracle.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from enum import Enum
from datetime import datetime
import logging
import re

from ..common.url_utils import is_valid_linkedin_company, is_valid_website_url

logger = logging.getLogger(__name__)


class FundingStage(str, Enum):
    """Funding round stages (display values are stored verbatim in the graph)."""
    PRE_SEED = "Pre-Seed"
    SEED = "Seed"
    SERIES_A = "Series A"
    SERIES_B = "Series B"
    SERIES_C = "Series C"
    SERIES_D = "Series D"
    SERIES_E_PLUS = "Series E+"
    BRIDGE = "Bridge"
    GROWTH = "Growth"
    DEBT = "Debt"
    GRANT = "Grant"


_STAGE_LOOKUP = {re.sub(r"[^a-z0-9+]", "", s.value.lower()): s for s in FundingStage}
_STAGE_LOOKUP.update({
    "seriese": FundingStage.SERIES_E_PLUS,
    "seriesf": FundingStage.SERIES_E_PLUS,
    "seriesg": FundingStage.SERIES_E_PLUS,
})


def coerce_stage(value) -> Optional[FundingStage]:
    """Map free-form stage labels ("series a", "PRE_SEED", "Series E") onto FundingStage."""
    if value is None or value == "":
        return None
    if isinstance(value, FundingStage):
        return value
    key = re.sub(r"[^a-z0-9+]", "", str(value).lower())
    stage = _STAGE_LOOKUP.get(key)
    if stage is None:
        logger.debug(f"Unrecognized funding stage dropped: {value!r}")
    return stage


def clamp_confidence(value) -> float:
    """Clamp to [0, 1]; non-numeric input becomes 0."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if v != v:  # NaN
        return 0.0
    return max(0.0, min(1.0, v))


class CompanyMeta(BaseModel):
    """Company metadata an oracle may pick up while reading articles."""
    description: Optional[str] = Field(default=None, description="One-sentence company description")
    website: Optional[str] = Field(default=None, description="Company's own website URL")
    founded_year: Optional[int] = Field(default=None, description="Year the company was founded")
    employee_range: Optional[str] = Field(
        default=None,
        description="One of: 1-10, 11-50, 51-200, 201-500, 501-1000, 1000+"
    )
    linkedin_url: Optional[str] = Field(default=None, description="LinkedIn company page URL")

    @field_validator("website")
    @classmethod
    def validate_website(cls, v: Optional[str]) -> Optional[str]:
        if v and not is_valid_website_url(v):
            logger.debug(f"Rejecting non-website URL in company meta: {v}")
            return None
        return v or None

    @field_validator("linkedin_url")
    @classmethod
    def validate_linkedin(cls, v: Optional[str]) -> Optional[str]:
        if v and not is_valid_linkedin_company(v):
            return None
        return v or None

    @field_validator("founded_year")
    @classmethod
    def validate_founded_year(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not (1800 <= v <= datetime.now().year):
            return None
        return v


class FundingExtraction(BaseModel):
    """One article's claim about one funding event. Never persisted standalone."""
    company_name: str
    amount: Optional[float] = Field(default=None, description="Amount in original currency")
    currency: str = "USD"
    amount_usd: Optional[float] = None
    stage: Optional[FundingStage] = None
    investors: List[str] = Field(default_factory=list)
    lead_investor: Optional[str] = None
    country: Optional[str] = None
    confidence: float = Field(default=0.0, description="Clamped to [0, 1]")
    fired_signals: List[str] = Field(default_factory=list)
    excerpt: str = ""
    company_meta: Optional[CompanyMeta] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v) -> float:
        return clamp_confidence(v)

    @field_validator("stage", mode="before")
    @classmethod
    def coerce(cls, v):
        return coerce_stage(v)


class ArticleRef(BaseModel):
    """Pointer from a grouped round back to one source article."""
    article_id: Optional[str] = None
    url: str
    title: str = ""
    feed_title: Optional[str] = None
    confidence: float = 0.0
    published_at: Optional[datetime] = None


class GroupCandidate(BaseModel):
    """Input unit of the round grouper."""
    extraction: FundingExtraction
    source: ArticleRef
    seen_at: datetime = Field(description="Publication time, or ingest time when unknown")
    ingested_at: Optional[datetime] = Field(
        default=None,
        description="When this extraction was committed to the graph, if ever"
    )


class GroupedRound(BaseModel):
    """Derived view: one real-world financing event seen through N articles."""
    key: str = Field(description="normalizedCompany::normalizedStage::YYYY-MM-DD of the earliest member")
    best_company_name: str
    amount_usd: Optional[float] = None
    stage: Optional[FundingStage] = None
    lead_investor: Optional[str] = None
    country: Optional[str] = None
    all_investors: List[str] = Field(default_factory=list)
    source_count: int = 0
    max_confidence: float = 0.0
    sources: List[ArticleRef] = Field(default_factory=list)
    first_seen: datetime
    last_seen: datetime
    ingested_at: Optional[datetime] = None


# =============================================================================
# ORACLE RESPONSE MODELS (Instructor)
# =============================================================================

class LLMFundingResponse(BaseModel):
    """Structured output requested from the funding oracle."""
    is_funding_article: bool = Field(
        description="True ONLY for a specific startup/company funding announcement. "
                    "False for roundups, listicles, market analysis, IPOs, acquisitions, "
                    "VC fund formations, government grants and event promotions."
    )
    company_name: Optional[str] = Field(default=None, description="Name of the company that raised")
    amount: Optional[float] = Field(default=None, description="Raw number, e.g. 10000000 for $10M")
    currency: str = Field(default="USD", description="ISO code: USD, EUR, GBP, CHF, SEK, NOK, DKK, PLN")
    stage: Optional[str] = Field(
        default=None,
        description="One of: Pre-Seed, Seed, Series A, Series B, Series C, Series D, "
                    "Series E+, Bridge, Growth, Debt, Grant"
    )
    investors: List[str] = Field(
        default_factory=list,
        description="Individual investor names, not descriptions like 'existing investors'"
    )
    lead_investor: Optional[str] = Field(default=None)
    country: Optional[str] = Field(default=None, description="Country name, e.g. Germany, France, UK")
    confidence: float = Field(
        default=0.5,
        description="0.0-1.0 certainty this is a specific funding announcement. "
                    "Corroborating sources should increase it."
    )
    company_meta: Optional[CompanyMeta] = None

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v) -> str:
        return (str(v).strip().upper() if v else "USD") or "USD"


class ArticleSource(BaseModel):
    """Title + body handed to an extractor."""
    title: str
    content: str = ""
