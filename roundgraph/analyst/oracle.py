"""
Funding oracle - LLM cross-referencing extraction via Instructor + Claude.

The oracle is an injected collaborator: callers construct an
LLMFundingOracle (or any object satisfying FundingOracle) and hand it to
FundingExtractor. There is no module-level client.

Failure model:
- Timeouts, rate limits and 5xx are retried with backoff, then reported as
  None (soft failure, caller falls back to the deterministic scorer).
- A response that cannot be validated into LLMFundingResponse raises
  OracleError.
"""

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional, Protocol, Sequence, Type, TypeVar

import httpx
import instructor
from anthropic import AsyncAnthropic, APIError, APITimeoutError, RateLimitError
from instructor.core import InstructorRetryException

from .schemas import ArticleSource, FundingExtraction, LLMFundingResponse
from .signals import to_usd
from ..common.errors import RoundgraphError
from ..config.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SINGLE_SOURCE_BUDGET = 3000
MULTI_SOURCE_BUDGET = 6000

SYSTEM_PROMPT = """You are a funding round extraction engine. Given one or more news articles about the same funding round, extract structured funding data by cross-referencing all sources.

Rules:
- Only extract SPECIFIC startup/company funding announcements (Seed, Series A-E, Growth, Bridge, etc.)
- Do NOT extract: funding roundups/listicles, market analysis, IPOs, acquisitions/mergers, VC fund formations, government grants, conference announcements
- If multiple sources report on the same round, combine information: one source may name investors another missed, or provide a more precise amount
- If sources conflict, prefer the most specific/detailed source and reflect uncertainty in the confidence score
- For investors, extract individual investor names, not descriptions like "existing investors"
- For country, use the country name (e.g. "Germany", "France", "UK")
- Confidence reflects how certain you are this is a specific funding announcement (0.0-1.0). Multiple corroborating sources should increase confidence.
- Amount is a raw number (e.g. 10000000 for $10M)

Also extract any available company metadata (description, website, founded year, employee range, LinkedIn page)."""


class OracleError(RoundgraphError):
    """Oracle answered, but not with anything usable."""
    pass


class FundingOracle(Protocol):
    """Same contract as the deterministic scorer, plus multi-source corroboration."""

    async def extract(self, title: str, content: str) -> Optional[FundingExtraction]:
        ...

    async def extract_from_sources(self, sources: Sequence[ArticleSource]) -> Optional[FundingExtraction]:
        ...


def build_user_content(sources: Sequence[ArticleSource]) -> str:
    """
    Render sources into one prompt.

    A single source gets 3000 chars of body; N sources share 6000 chars
    evenly so the prompt size stays flat as corroboration grows.
    """
    if len(sources) == 1:
        s = sources[0]
        truncated = (s.content or s.title)[:SINGLE_SOURCE_BUDGET]
        return f"Title: {s.title}\n\nContent: {truncated}"

    budget = MULTI_SOURCE_BUDGET // len(sources)
    parts = []
    for i, s in enumerate(sources, start=1):
        truncated = (s.content or s.title)[:budget]
        parts.append(f"--- Source {i} ---\nTitle: {s.title}\n\nContent: {truncated}")
    return (
        f"{len(sources)} news articles report on the same funding round. "
        f"Cross-reference all sources to extract the most complete and accurate data.\n\n"
        + "\n\n".join(parts)
    )


def to_extraction(response: LLMFundingResponse, sources: Sequence[ArticleSource]) -> Optional[FundingExtraction]:
    """Convert the structured oracle answer; None when it is not a funding article."""
    if not response.is_funding_article or not (response.company_name or "").strip():
        return None

    signals = ["llm_extraction"]
    if len(sources) > 1:
        signals.append(f"multi_source_{len(sources)}")

    return FundingExtraction(
        company_name=response.company_name.strip(),
        amount=response.amount,
        currency=response.currency,
        amount_usd=to_usd(response.amount, response.currency),
        stage=response.stage,
        investors=[i.strip() for i in response.investors if i and i.strip()],
        lead_investor=(response.lead_investor or "").strip() or None,
        country=(response.country or "").strip() or None,
        confidence=response.confidence,
        fired_signals=signals,
        excerpt=sources[0].title,
        company_meta=response.company_meta,
    )


def create_llm_client(config: Optional[Settings] = None):
    """Instructor-wrapped AsyncAnthropic client with bounded timeouts."""
    config = config or default_settings
    return instructor.from_anthropic(AsyncAnthropic(
        api_key=config.anthropic_api_key,
        timeout=httpx.Timeout(config.llm_timeout, connect=config.llm_connect_timeout),
    ))


async def call_structured(
    client,
    config: Settings,
    system: str,
    messages: List[Dict[str, Any]],
    response_model: Type[T],
    max_tokens: Optional[int] = None,
    context: str = "",
) -> Optional[T]:
    """
    One structured Claude call with retry.

    Timeouts and 5xx back off exponentially, rate limits back off linearly,
    4xx are not retried.

    Returns:
        The validated response model, or None when the API stayed unavailable

    Raises:
        OracleError: the response could not be validated into response_model
    """
    max_retries = config.llm_max_retries
    last_error: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return await client.messages.create(
                model=config.llm_model,
                max_tokens=max_tokens or config.llm_max_tokens,
                system=system,
                messages=messages,
                response_model=response_model,
            )

        except APITimeoutError as e:
            last_error = e
            backoff = (2 ** attempt) * random.uniform(0.9, 1.1)
            logger.warning(
                f"Claude API timeout (attempt {attempt + 1}/{max_retries + 1}, "
                f"backoff={backoff:.1f}s): {context}"
            )
            if attempt < max_retries:
                await asyncio.sleep(backoff)
            continue

        except RateLimitError as e:
            last_error = e
            backoff = 10 * (attempt + 1) * random.uniform(0.9, 1.1)
            logger.warning(
                f"Claude API rate limit (attempt {attempt + 1}/{max_retries + 1}, "
                f"backoff={backoff:.1f}s): {e}"
            )
            if attempt < max_retries:
                await asyncio.sleep(backoff)
            continue

        except APIError as e:
            last_error = e
            logger.error(f"Claude API error (attempt {attempt + 1}/{max_retries + 1}): {e}")
            status = getattr(e, "status_code", None) or 0
            if attempt < max_retries and status >= 500:
                await asyncio.sleep((2 ** attempt) * random.uniform(0.9, 1.1))
                continue
            break  # Don't retry client errors (4xx)

        except InstructorRetryException as e:
            logger.error(f"Oracle response failed validation ({context}): {e}", exc_info=True)
            raise OracleError(f"Malformed oracle response: {e}") from e

    logger.error(
        f"Claude API unavailable after {max_retries + 1} attempts ({context}): "
        f"{type(last_error).__name__}: {last_error}"
    )
    return None


class LLMFundingOracle:
    """
    Claude-backed funding oracle.

    Args:
        config: Settings (model, timeouts, retries, API key)
        client: Pre-built Instructor client (tests inject a double here)
    """

    def __init__(self, config: Optional[Settings] = None, client=None):
        self.config = config or default_settings
        self.client = client if client is not None else create_llm_client(self.config)

    async def extract(self, title: str, content: str) -> Optional[FundingExtraction]:
        return await self.extract_from_sources([ArticleSource(title=title, content=content or "")])

    async def extract_from_sources(self, sources: Sequence[ArticleSource]) -> Optional[FundingExtraction]:
        """
        Cross-reference one or more articles about the same round.

        Returns:
            FundingExtraction, or None if not a funding article or the API stayed unavailable

        Raises:
            OracleError: response failed validation
        """
        if not sources:
            return None

        response = await call_structured(
            self.client,
            self.config,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": build_user_content(sources)}],
            response_model=LLMFundingResponse,
            context=sources[0].title[:80],
        )
        if response is None:
            return None
        return to_extraction(response, sources)
