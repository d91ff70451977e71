"""
Enrichment trust merger.

Metadata proposals come from sources of unequal trust. For investors the
firm's own website is primary and funding articles are secondary:

- primary wins whenever it has a non-empty value, whatever its confidence
- secondary only fills gaps, with confidence capped at 0.6
- fields the secondary source must never supply (aum, founded year,
  website, LinkedIn) do not exist on InvestorArticleFields at all

The field sets double as Instructor response models for the extractors.
Merged results are keyed by graph property name and go through the
confidence-gated write policy.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from ..analyst.schemas import clamp_confidence
from ..common.url_utils import is_valid_linkedin_company, is_valid_website_url
from ..config.settings import settings
from ..graph.write_policy import FieldValue, is_empty, to_graph_property

logger = logging.getLogger(__name__)

PRIMARY = "primary"
SECONDARY = "secondary"

EMPLOYEE_RANGES = ("1-10", "11-50", "51-200", "201-500", "501-1000", "1000+")
COMPANY_STATUSES = ("active", "acquired", "closed")
INVESTOR_TYPES = (
    "vc", "pe", "cvc", "angel_group", "family_office", "sovereign_wealth",
    "government", "accelerator", "incubator", "bank", "hedge_fund", "unknown",
)


class _FieldSet(BaseModel):
    """Partial field structure: every field optional, per-field confidence alongside."""
    field_confidence: Dict[str, float] = Field(
        default_factory=dict,
        description="Confidence 0.0-1.0 per extracted field name; 0 for unknown fields",
    )

    @field_validator("field_confidence", mode="before")
    @classmethod
    def clamp_all(cls, v) -> Dict[str, float]:
        if not isinstance(v, dict):
            return {}
        return {str(k): clamp_confidence(c) for k, c in v.items()}

    def data_fields(self) -> List[str]:
        return [name for name in type(self).model_fields if name != "field_confidence"]

    def confidence(self, name: str) -> float:
        return self.field_confidence.get(name, 0.0)

    def filled(self) -> List[str]:
        return [name for name in self.data_fields() if not is_empty(getattr(self, name))]


def _founded_year(v: Optional[int]) -> Optional[int]:
    if v is not None and not (1800 <= v <= datetime.now().year):
        return None
    return v


def _clean_list(v) -> Optional[List[str]]:
    if v is None:
        return None
    if isinstance(v, str):
        v = [v]
    items = [str(x).strip() for x in v if x is not None and str(x).strip()]
    return items or None


class InvestorArticleFields(_FieldSet):
    """What funding articles may say about an investor: deal activity only."""
    type: Optional[str] = Field(default=None, description=f"One of: {', '.join(INVESTOR_TYPES)}")
    stage_focus: Optional[List[str]] = Field(default=None, description='e.g. ["Seed", "Series A"]')
    sector_focus: Optional[List[str]] = Field(default=None, description='e.g. ["Fintech", "SaaS"]')
    geo_focus: Optional[List[str]] = Field(default=None, description='e.g. ["DACH", "Europe"]')
    check_size_min_usd: Optional[float] = Field(default=None, description="Raw USD number")
    check_size_max_usd: Optional[float] = Field(default=None, description="Raw USD number")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v if v in INVESTOR_TYPES else None

    @field_validator("stage_focus", "sector_focus", "geo_focus", mode="before")
    @classmethod
    def clean_lists(cls, v):
        return _clean_list(v)


class InvestorWebsiteFields(InvestorArticleFields):
    """What an investor's own website may say about it."""
    aum: Optional[float] = Field(default=None, description="Assets under management, raw USD number")
    founded_year: Optional[int] = Field(default=None, description="Year the firm was established")
    website: Optional[str] = None
    linkedin_url: Optional[str] = Field(default=None, description="Full LinkedIn company URL")

    @field_validator("founded_year")
    @classmethod
    def validate_founded_year(cls, v: Optional[int]) -> Optional[int]:
        return _founded_year(v)

    @field_validator("website")
    @classmethod
    def validate_website(cls, v: Optional[str]) -> Optional[str]:
        return v if v and is_valid_website_url(v) else None

    @field_validator("linkedin_url")
    @classmethod
    def validate_linkedin(cls, v: Optional[str]) -> Optional[str]:
        return v if v and is_valid_linkedin_company(v) else None


class CompanyFields(_FieldSet):
    """Company metadata extracted from articles plus the company website."""
    description: Optional[str] = Field(default=None, description="One-sentence company description")
    website: Optional[str] = None
    founded_year: Optional[int] = None
    employee_range: Optional[str] = Field(default=None, description=f"One of: {', '.join(EMPLOYEE_RANGES)}")
    linkedin_url: Optional[str] = None
    country: Optional[str] = Field(default=None, description='Country name, e.g. "Germany", "UK"')
    status: Optional[str] = Field(default=None, description=f"One of: {', '.join(COMPANY_STATUSES)}")
    location: Optional[str] = Field(default=None, description="HQ city")

    @field_validator("founded_year")
    @classmethod
    def validate_founded_year(cls, v: Optional[int]) -> Optional[int]:
        return _founded_year(v)

    @field_validator("website")
    @classmethod
    def validate_website(cls, v: Optional[str]) -> Optional[str]:
        return v if v and is_valid_website_url(v) else None

    @field_validator("linkedin_url")
    @classmethod
    def validate_linkedin(cls, v: Optional[str]) -> Optional[str]:
        return v if v and is_valid_linkedin_company(v) else None

    @field_validator("employee_range")
    @classmethod
    def validate_employee_range(cls, v: Optional[str]) -> Optional[str]:
        return v if v in EMPLOYEE_RANGES else None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v if v in COMPANY_STATUSES else None


# Which sources may supply each investor field, in priority order
INVESTOR_FIELD_PRIORITY: Dict[str, Tuple[str, ...]] = {
    "type": (PRIMARY, SECONDARY),
    "stage_focus": (PRIMARY, SECONDARY),
    "sector_focus": (PRIMARY, SECONDARY),
    "geo_focus": (PRIMARY, SECONDARY),
    "check_size_min_usd": (PRIMARY, SECONDARY),
    "check_size_max_usd": (PRIMARY, SECONDARY),
    "aum": (PRIMARY,),
    "founded_year": (PRIMARY,),
    "website": (PRIMARY,),
    "linkedin_url": (PRIMARY,),
}


def field_values(fields: _FieldSet, cap: Optional[float] = None, skip: Tuple[str, ...] = ()) -> Dict[str, FieldValue]:
    """Non-empty fields of one source as graph property -> FieldValue."""
    values = {}
    for name in fields.filled():
        if name in skip:
            continue
        confidence = fields.confidence(name)
        if cap is not None:
            confidence = min(confidence, cap)
        values[to_graph_property(name)] = FieldValue(getattr(fields, name), confidence)
    return values


def merge_field_sets(
    primary: Optional[_FieldSet],
    secondary: Optional[_FieldSet],
    priority: Optional[Dict[str, Tuple[str, ...]]] = None,
    secondary_cap: Optional[float] = None,
) -> Dict[str, FieldValue]:
    """
    Combine two proposals for the same entity.

    Args:
        primary: High-trust source (wins whenever non-empty)
        secondary: Low-trust source (fills gaps only)
        priority: Field -> allowed sources in order (default: investor table)
        secondary_cap: Confidence ceiling for secondary values (default 0.6)

    Returns:
        Graph property name -> FieldValue for every field some allowed source filled
    """
    priority = INVESTOR_FIELD_PRIORITY if priority is None else priority
    cap = settings.secondary_confidence_cap if secondary_cap is None else secondary_cap
    sources = {PRIMARY: primary, SECONDARY: secondary}

    merged: Dict[str, FieldValue] = {}
    for name, allowed in priority.items():
        for source_name in allowed:
            source = sources[source_name]
            if source is None or name not in type(source).model_fields:
                continue
            value = getattr(source, name)
            if is_empty(value):
                continue
            confidence = source.confidence(name)
            if source_name == SECONDARY:
                confidence = min(confidence, cap)
            merged[to_graph_property(name)] = FieldValue(value, confidence)
            break

    logger.debug(f"Merged fields: {sorted(merged)}")
    return merged
