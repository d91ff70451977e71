"""
Company enrichment.

One extraction over the company's articles plus its verified website.
Website/LinkedIn found by discovery fill extraction gaps at 0.8. The HQ
city becomes a Location node linked by HQ_IN rather than a property.
"""

import logging
from typing import List, Optional

from ..analyst.normalizer import normalize_company
from ..graph.store import COMPANY, HQ_IN, LOCATION, RAISED, EdgeBatch, MergeMode, NodeBatch
from ..graph.write_policy import FieldValue, locked_fields
from .extractors import CompanyFieldExtractor, LLMCompanyFieldExtractor
from .pipeline import EnrichmentReport, EntityEnricher, SavePlan, WebsiteState
from .trust import field_values

logger = logging.getLogger(__name__)


class CompanyEnricher(EntityEnricher):
    entity_type = "company"
    label = COMPANY
    rel_type = RAISED

    def __init__(self, *args, extractor: Optional[CompanyFieldExtractor] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.extractor = extractor or LLMCompanyFieldExtractor(self.config)

    def normalize(self, name: str) -> str:
        return normalize_company(name)

    async def extract(
        self, name: str, article_texts: List[str], website: WebsiteState, report: EnrichmentReport
    ) -> SavePlan:
        fields = await self.extractor.extract(name, article_texts, website.text)
        plan = SavePlan()
        if fields is None:
            report.log("llm", "Extraction unavailable, saving discovery results only")
            return plan

        plan.proposals = field_values(fields, skip=("location",))
        if fields.location:
            plan.location = FieldValue(fields.location, fields.confidence("location"))
        report.log("llm", f"{len(fields.filled())} fields extracted")
        return plan

    async def save_location(self, key: str, location: FieldValue) -> bool:
        """MERGE the HQ city and link it; skipped when weak or when location is locked."""
        if location.confidence <= self.config.location_confidence_threshold:
            return False
        node = await self.store.get_node(COMPANY, key)
        if node is None or "location" in locked_fields(node):
            return False

        await self.store.merge_nodes(NodeBatch(
            LOCATION,
            [{"name": location.value, "type": "city"}],
            {"type": MergeMode.KEEP_EXISTING},
        ))
        await self.store.merge_edges(EdgeBatch(HQ_IN, COMPANY, LOCATION, [{"start": key, "end": location.value}]))
        logger.info(f"Company {key!r} HQ_IN {location.value!r}")
        return True
