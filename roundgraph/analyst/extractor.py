"""
Funding extractor - oracle-backed extraction with transparent deterministic fallback.

Gate first (cheap regex), then the injected oracle if one is configured,
then the deterministic scorer. The pipeline never stalls on the oracle:
None answers, timeouts and OracleError all degrade to the scorer.
"""

import logging
from typing import Optional, Sequence

from . import scorer
from .oracle import FundingOracle, OracleError
from .schemas import ArticleSource, FundingExtraction

logger = logging.getLogger(__name__)


class FundingExtractor:
    """
    Per-article funding extraction.

    Args:
        oracle: Optional FundingOracle. Without one, extraction is purely
            deterministic.
    """

    def __init__(self, oracle: Optional[FundingOracle] = None):
        self.oracle = oracle

    async def extract(self, title: str, content: Optional[str]) -> Optional[FundingExtraction]:
        """
        Extract one funding event from an article.

        Returns:
            FundingExtraction or None (no funding signal / rejected)
        """
        text = scorer.clean_text(title, content)
        if not scorer.has_any_funding_signal(title or "", text):
            return None

        if self.oracle is not None:
            try:
                result = await self.oracle.extract(title, content or "")
                if result is not None:
                    return result
                logger.info(f"Oracle declined, falling back to signal scorer: {title[:80]}")
            except OracleError as e:
                logger.warning(f"Oracle extraction failed, falling back to signal scorer: {e}")

        return scorer.extract(title, content)

    async def extract_from_sources(self, sources: Sequence[ArticleSource]) -> Optional[FundingExtraction]:
        """
        Cross-reference several articles believed to describe one round.

        With an oracle, all sources go into one call and the result carries a
        multi_source_N signal. Without one (or on failure), the best
        deterministic extraction across the sources wins, with its investor
        list widened by the others.
        """
        sources = [s for s in sources if s.title or s.content]
        if not sources:
            return None

        if self.oracle is not None:
            try:
                result = await self.oracle.extract_from_sources(sources)
                if result is not None:
                    return result
            except OracleError as e:
                logger.warning(f"Multi-source oracle extraction failed, falling back: {e}")

        extractions = [e for e in (scorer.extract(s.title, s.content) for s in sources) if e is not None]
        if not extractions:
            return None

        best = max(extractions, key=lambda e: e.confidence)
        investors = list(dict.fromkeys(i for e in extractions for i in e.investors))
        update = {"investors": investors}
        if len(sources) > 1:
            update["fired_signals"] = best.fired_signals + [f"multi_source_{len(sources)}"]
        for field in ("amount", "amount_usd", "stage", "lead_investor", "country"):
            if getattr(best, field) is None:
                donor = next((e for e in extractions if getattr(e, field) is not None), None)
                if donor is not None:
                    update[field] = getattr(donor, field)
                    if field == "amount":
                        update["currency"] = donor.currency
        return best.model_copy(update=update)
