"""
Investor enrichment.

Two extractions with different trust: the firm's own website (primary) and
the funding articles it appears in (secondary, deal activity only). The
trust merger combines them before the gated write.
"""

import logging
from typing import List, Optional

from ..analyst.normalizer import normalize_investor
from ..archivist.storage import StoredArticle
from ..graph.store import INVESTOR, PARTICIPATED_IN
from .extractors import InvestorFieldExtractor, LLMInvestorFieldExtractor
from .pipeline import EnrichmentReport, EntityEnricher, SavePlan, WebsiteState
from .trust import merge_field_sets

logger = logging.getLogger(__name__)


class InvestorEnricher(EntityEnricher):
    entity_type = "investor"
    label = INVESTOR
    rel_type = PARTICIPATED_IN

    def __init__(self, *args, extractor: Optional[InvestorFieldExtractor] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.extractor = extractor or LLMInvestorFieldExtractor(self.config)

    def normalize(self, name: str) -> str:
        return normalize_investor(name)

    def verification_context(self, name: str, articles: List[StoredArticle]) -> str:
        # Articles describe portfolio companies, not the firm
        return f'"{name}" is an investment firm / VC / fund / angel investor.'

    async def extract(
        self, name: str, article_texts: List[str], website: WebsiteState, report: EnrichmentReport
    ) -> SavePlan:
        website_fields = None
        if website.text:
            website_fields = await self.extractor.extract_from_website(name, website.text)
            if website_fields is not None:
                report.log("llm", f"Website: {len(website_fields.filled())} fields")

        article_fields = await self.extractor.extract_from_articles(name, article_texts)
        if article_fields is not None:
            report.log("llm", f"Articles: {len(article_fields.filled())} fields")

        merged = merge_field_sets(
            website_fields, article_fields, secondary_cap=self.config.secondary_confidence_cap
        )
        report.log("llm", f"{len(merged)} fields after merge")
        return SavePlan(proposals=merged)
