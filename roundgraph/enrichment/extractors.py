"""
Metadata extractors for enrichment.

Each extractor is one structured Claude call whose response model is the
typed field set from trust.py, so the oracle can only return fields that
source is allowed to supply.
"""

import logging
from typing import List, Optional, Protocol, Sequence

from ..analyst.oracle import call_structured, create_llm_client
from ..config.settings import Settings, settings as default_settings
from .trust import (
    EMPLOYEE_RANGES,
    INVESTOR_TYPES,
    COMPANY_STATUSES,
    CompanyFields,
    InvestorArticleFields,
    InvestorWebsiteFields,
)

logger = logging.getLogger(__name__)

ARTICLE_BUDGET = 4000
COMPANY_WEBSITE_BUDGET = 3000
INVESTOR_WEBSITE_BUDGET = 4000


class CompanyFieldExtractor(Protocol):
    async def extract(
        self, company_name: str, article_texts: Sequence[str], website_text: Optional[str]
    ) -> Optional[CompanyFields]:
        ...


class InvestorFieldExtractor(Protocol):
    async def extract_from_website(self, investor_name: str, website_text: str) -> Optional[InvestorWebsiteFields]:
        ...

    async def extract_from_articles(
        self, investor_name: str, article_texts: Sequence[str]
    ) -> Optional[InvestorArticleFields]:
        ...


def article_sections(article_texts: Sequence[str], budget: int = ARTICLE_BUDGET) -> List[str]:
    """'--- Article N ---' blocks sharing a fixed character budget."""
    if not article_texts:
        return []
    per_article = budget // len(article_texts)
    return [
        f"--- Article {i + 1} ---\n{text[:per_article]}"
        for i, text in enumerate(article_texts)
    ]


COMPANY_SYSTEM_PROMPT = f"""You are a company data enrichment engine. Given sources about a company (news articles and/or website content), extract structured metadata.

Rules:
- Extract ONLY information that is clearly stated or strongly implied in the sources
- For employee_range use one of: {", ".join(EMPLOYEE_RANGES)}
- For status use one of: {", ".join(COMPANY_STATUSES)}
- For country, use the country name (e.g. "Germany", "France", "UK")
- For location, use the HQ city name if available
- For linkedin_url and website, provide the full URL
- For each field, provide a confidence score (0.0-1.0) in field_confidence
- If a field cannot be determined, set it to null with confidence 0"""


INVESTOR_WEBSITE_SYSTEM_PROMPT = f"""You extract structured data about an investment firm from its own website content.

This is the investor's OWN website. All information here is about the investor itself.

Rules:
- For type use one of: {", ".join(INVESTOR_TYPES)}
- For stage_focus, extract stages like ["Pre-Seed", "Seed", "Series A", "Series B", "Growth"]
- For sector_focus, extract industries like ["Fintech", "SaaS", "HealthTech", "DeepTech"]
- For geo_focus, extract regions like ["DACH", "Europe", "Nordics", "Global"]
- For check_size_min_usd / check_size_max_usd and aum, extract in USD (raw numbers)
- For founded_year, the year the firm was established
- For linkedin_url, the full LinkedIn company URL
- Confidence 0.0-1.0 per field in field_confidence. If unknown, set null with confidence 0."""


INVESTOR_ARTICLE_SYSTEM_PROMPT = """You analyze funding round articles to extract information about an INVESTOR's investment activity.

CRITICAL: The articles describe STARTUPS that raised money. The investor participated in these rounds.
- Do NOT extract the startup's data (website, location, founded year, description)
- ONLY extract information about the INVESTOR's investment patterns:
  - What stages do they invest in? (from the round types)
  - What sectors do they focus on? (from the startups' industries)
  - What geographies do they cover? (from where the startups are based)
  - What is their typical check size? (from round amounts, if their contribution is stated)
  - What type of investor are they? (VC, PE, angel, etc.)
- Confidence 0.0-1.0 per field in field_confidence."""


class LLMCompanyFieldExtractor:
    """One extraction over article excerpts plus the verified company website."""

    def __init__(self, config: Optional[Settings] = None, client=None):
        self.config = config or default_settings
        self.client = client if client is not None else create_llm_client(self.config)

    async def extract(
        self, company_name: str, article_texts: Sequence[str], website_text: Optional[str]
    ) -> Optional[CompanyFields]:
        parts = article_sections(article_texts)
        if website_text:
            parts.append(f"--- Company Website ---\n{website_text[:COMPANY_WEBSITE_BUDGET]}")
        content = f"Company: {company_name}\n\n" + "\n\n".join(parts)

        return await call_structured(
            self.client,
            self.config,
            system=COMPANY_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": content}],
            response_model=CompanyFields,
            context=f"company fields for {company_name}",
        )


class LLMInvestorFieldExtractor:
    """Two calls with different trust: the firm's website, then deal articles."""

    def __init__(self, config: Optional[Settings] = None, client=None):
        self.config = config or default_settings
        self.client = client if client is not None else create_llm_client(self.config)

    async def extract_from_website(self, investor_name: str, website_text: str) -> Optional[InvestorWebsiteFields]:
        content = f"Investor: {investor_name}\n\n--- Website Content ---\n{website_text[:INVESTOR_WEBSITE_BUDGET]}"
        return await call_structured(
            self.client,
            self.config,
            system=INVESTOR_WEBSITE_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": content}],
            response_model=InvestorWebsiteFields,
            context=f"investor website fields for {investor_name}",
        )

    async def extract_from_articles(
        self, investor_name: str, article_texts: Sequence[str]
    ) -> Optional[InvestorArticleFields]:
        if not article_texts:
            return None
        content = f"Investor: {investor_name}\n\n" + "\n\n".join(article_sections(article_texts))
        return await call_structured(
            self.client,
            self.config,
            system=INVESTOR_ARTICLE_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": content}],
            response_model=InvestorArticleFields,
            context=f"investor article fields for {investor_name}",
        )
