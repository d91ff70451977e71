"""
Website discovery - bounded state machine.

    PRIMARY_SEARCH ──found──────────────────────────────> FOUND
          │ nothing verified
          v
    FALLBACK_EXTRACTION ──found──> FOUND    (oracle suggestions + article links)
          │ nothing verified, attempts < cap
          v
    FEEDBACK_RETRY ──found──> FOUND         (oracle told what was rejected)
          │ cap reached
          v
      NOT_FOUND

The oracle is asked at most settings.discovery_max_attempts times (2) per
discovery, and a domain rejected once is never fetched again.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Set

import httpx
from pydantic import BaseModel, Field

from ..analyst.oracle import OracleError, call_structured, create_llm_client
from ..archivist.storage import StoredArticle
from ..common.brave_client import BraveAPIError, BraveClient
from ..common.http_client import create_fetch_client
from ..common.url_utils import (
    extract_candidate_urls,
    get_domain,
    is_valid_linkedin_company,
    is_valid_website_url,
    sanitize_url,
)
from ..config.settings import Settings, settings as default_settings
from .verifier import Rejection, WebVerificationOracle, strip_html, validate_and_verify

logger = logging.getLogger(__name__)

MAX_ARTICLE_URLS = 30


class DiscoveryState(str, Enum):
    PRIMARY_SEARCH = "primary_search"
    FALLBACK_EXTRACTION = "fallback_extraction"
    FEEDBACK_RETRY = "feedback_retry"
    FOUND = "found"
    NOT_FOUND = "not_found"


TERMINAL_STATES = {DiscoveryState.FOUND, DiscoveryState.NOT_FOUND}


class WebsiteSuggestions(BaseModel):
    """Oracle answer: likely official websites, best first."""
    website_candidates: List[str] = Field(
        default_factory=list,
        description="3-5 website URLs ordered by confidence, most likely first",
    )
    linkedin_url: Optional[str] = Field(
        default=None,
        description="https://www.linkedin.com/company/SLUG/ or null",
    )


class WebsiteSuggestionOracle(Protocol):
    async def suggest(self, messages: List[Dict[str, str]]) -> Optional[WebsiteSuggestions]:
        ...


@dataclass
class DiscoveryResult:
    website: Optional[str] = None
    linkedin_url: Optional[str] = None
    html: Optional[str] = None
    state: DiscoveryState = DiscoveryState.NOT_FOUND
    oracle_attempts: int = 0
    transitions: List[DiscoveryState] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)


SUGGESTION_SYSTEM_PROMPT = """You are a website identification engine. Given the name of an entity and its type, plus URLs found in news articles, identify the entity's OFFICIAL website and LinkedIn page.

CRITICAL RULES:
- You are looking for the website of the SPECIFIC ENTITY named below, NOT any other company mentioned in the articles
- Articles about funding rounds mention BOTH the startup that raised AND the investors. You must distinguish between them
- If the entity is an INVESTOR: URLs to its portfolio companies' websites are NOT the investor's website
- If the entity is a COMPANY/STARTUP: URLs to investors' websites are NOT the startup's website

Your job:
- Identify which of the extracted URLs (if any) is the entity's official website
- If none match, suggest the correct URL from your knowledge
- Return 3-5 website candidates ordered by confidence (most likely first)
- Common VC patterns: abbreviations (a16z.com, lsvp.com), initials+suffix (hvcap.com), branded (sequoiacap.com, indexventures.com)
- For the LinkedIn URL, use the format https://www.linkedin.com/company/SLUG/"""


class LLMWebsiteSuggester:
    """Claude-backed WebsiteSuggestionOracle; failures yield None (the attempt still counts)."""

    def __init__(self, config: Optional[Settings] = None, client=None):
        self.config = config or default_settings
        self.client = client if client is not None else create_llm_client(self.config)

    async def suggest(self, messages: List[Dict[str, str]]) -> Optional[WebsiteSuggestions]:
        try:
            return await call_structured(
                self.client,
                self.config,
                system=SUGGESTION_SYSTEM_PROMPT,
                messages=messages,
                response_model=WebsiteSuggestions,
                max_tokens=300,
                context="website suggestions",
            )
        except OracleError as e:
            logger.warning(f"Website suggestions unparseable: {e}")
            return None


def article_context(articles: Sequence[StoredArticle], limit: int = 2000) -> str:
    """Short "- title: text" digest of the articles, shared by discovery and verification."""
    lines = []
    for a in articles:
        text = strip_html(a.content)[:400] if a.content else a.title
        lines.append(f"- {a.title}: {text}")
    return "\n".join(lines)[:limit]


def _type_label(entity_type: str) -> str:
    return "Investment Firm / VC" if entity_type == "investor" else "Company / Startup"


class WebsiteDiscovery:
    """
    Finds and verifies an entity's official website.

    Args:
        verifier: WebVerificationOracle deciding whether a page belongs to the entity
        suggester: Optional WebsiteSuggestionOracle for the fallback phases
        search: Optional BraveClient for the primary search phase
        config: Settings (attempt cap, batch size, timeouts)
        http_client: Shared page-fetch client (tests inject a mock transport)
    """

    def __init__(
        self,
        verifier: WebVerificationOracle,
        suggester: Optional[WebsiteSuggestionOracle] = None,
        search: Optional[BraveClient] = None,
        config: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.verifier = verifier
        self.suggester = suggester
        self.search = search
        self.config = config or default_settings
        self.http_client = http_client

    async def discover(
        self,
        entity_name: str,
        articles: Sequence[StoredArticle] = (),
        entity_type: str = "company",
    ) -> DiscoveryResult:
        """
        Run the state machine to a terminal state.

        Args:
            entity_name: Display name
            articles: Articles about the entity (links are mined as candidates)
            entity_type: "company" or "investor"
        """
        owns_client = self.http_client is None
        client = self.http_client or create_fetch_client(timeout=self.config.verify_fetch_timeout)
        try:
            run = _DiscoveryRun(self, client, entity_name, articles, entity_type)
            return await run.execute()
        finally:
            if owns_client:
                await client.aclose()


class _DiscoveryRun:
    """State for one discover() call."""

    def __init__(self, discovery: WebsiteDiscovery, client, entity_name, articles, entity_type):
        self.d = discovery
        self.client = client
        self.entity_name = entity_name
        self.articles = list(articles)
        self.entity_type = entity_type
        self.context = article_context(self.articles)
        self.rejected_domains: Set[str] = set()
        self.messages: List[Dict[str, str]] = []
        self.result = DiscoveryResult()
        self.max_attempts = max(0, self.d.config.discovery_max_attempts)

    async def execute(self) -> DiscoveryResult:
        state = DiscoveryState.PRIMARY_SEARCH
        while state not in TERMINAL_STATES:
            self.result.transitions.append(state)
            if state == DiscoveryState.PRIMARY_SEARCH:
                state = await self.primary_search()
            elif state == DiscoveryState.FALLBACK_EXTRACTION:
                state = await self.oracle_round(first=True)
            else:
                state = await self.oracle_round(first=False)

        self.result.transitions.append(state)
        self.result.state = state
        if not self.result.linkedin_url:
            await self.search_linkedin()
        logger.info(
            f"Discovery for {self.entity_name!r}: {state.value} "
            f"({self.result.oracle_attempts} oracle attempts, {len(self.result.rejections)} rejections)"
        )
        return self.result

    # -------------------------------------------------------------------------

    async def verify(self, candidates: Sequence[str]) -> bool:
        fresh = [
            c for c in candidates
            if is_valid_website_url(c) and get_domain(c) not in self.rejected_domains
        ]
        if not fresh:
            return False

        outcome = await validate_and_verify(
            fresh,
            self.entity_name,
            self.d.verifier,
            context=self.context,
            entity_type=self.entity_type,
            client=self.client,
            batch_size=self.d.config.verify_batch_size,
        )
        if outcome.found is not None:
            self.result.website = outcome.found.url
            self.result.html = outcome.found.html
            return True

        self.rejected_domains.update(get_domain(c) for c in fresh)
        self.result.rejections.extend(outcome.rejections)
        return False

    def take_linkedin(self, url: Optional[str]) -> None:
        if not self.result.linkedin_url and url and is_valid_linkedin_company(url):
            self.result.linkedin_url = url

    async def web_search(self, query: str, count: int):
        search = self.d.search
        if search is None or not search.enabled:
            return []
        try:
            return await search.search_web(query, count=count)
        except BraveAPIError as e:
            logger.error(f"Web search disabled for this run: {e}")
            return []

    # -------------------------------------------------------------------------

    async def primary_search(self) -> DiscoveryState:
        if self.entity_type == "investor":
            query = f'"{self.entity_name}" venture capital fund official website'
        else:
            query = f'"{self.entity_name}" startup company official website'

        results = await self.web_search(query, self.d.config.search_result_count)
        for r in results:
            self.take_linkedin(r.url)

        if await self.verify([r.url for r in results]):
            return DiscoveryState.FOUND
        return DiscoveryState.FALLBACK_EXTRACTION

    def article_urls(self) -> List[str]:
        by_domain: Dict[str, str] = {}
        for url in extract_candidate_urls((a.url, a.content) for a in self.articles):
            by_domain.setdefault(get_domain(url), url)
        return list(by_domain.values())[:MAX_ARTICLE_URLS]

    def first_message(self, article_urls: List[str]) -> str:
        msg = f"Entity: {self.entity_name}\nEntity Type: {_type_label(self.entity_type)}\n"
        if self.entity_type == "investor":
            msg += (
                "\nIMPORTANT: This is an INVESTOR. The articles below are about funding rounds where this "
                "investor participated. The URLs in the articles likely point to the PORTFOLIO COMPANIES "
                "that received funding, NOT to this investor's website.\n"
            )
        if article_urls:
            msg += "\nURLs found in articles:\n" + "\n".join(article_urls) + "\n"
        if self.context:
            msg += f"\nArticle context:\n{self.context}"
        if self.result.rejections:
            msg += "\n\nAlready rejected (do NOT suggest these):\n" + self.rejection_lines()
        return msg

    def feedback_message(self) -> str:
        return (
            f'NONE of the previous candidates were correct for "{self.entity_name}" '
            f"({_type_label(self.entity_type)}).\n\nRejected:\n{self.rejection_lines()}\n\n"
            f'Please try DIFFERENT domains. Use your training knowledge about "{self.entity_name}".'
        )

    def rejection_lines(self) -> str:
        return "\n".join(f"- {get_domain(r.url)}: {r.reason}" for r in self.result.rejections)

    async def oracle_round(self, first: bool) -> DiscoveryState:
        """One oracle attempt (FALLBACK_EXTRACTION when first, FEEDBACK_RETRY otherwise)."""
        article_urls = self.article_urls() if first else []
        candidates: List[str] = []

        if self.d.suggester is not None and self.result.oracle_attempts < self.max_attempts:
            self.result.oracle_attempts += 1
            self.messages.append({
                "role": "user",
                "content": self.first_message(article_urls) if first else self.feedback_message(),
            })
            suggestions = await self.d.suggester.suggest(list(self.messages))
            if suggestions is not None:
                self.messages.append({"role": "assistant", "content": suggestions.model_dump_json()})
                candidates = [u for u in map(sanitize_url, suggestions.website_candidates) if u]
                self.take_linkedin(suggestions.linkedin_url)

        if first:
            known = {get_domain(c) for c in candidates}
            candidates.extend(u for u in article_urls if get_domain(u) not in known)

        if await self.verify(candidates):
            return DiscoveryState.FOUND

        if self.d.suggester is not None and self.result.oracle_attempts < self.max_attempts:
            return DiscoveryState.FEEDBACK_RETRY
        return DiscoveryState.NOT_FOUND

    async def search_linkedin(self) -> None:
        results = await self.web_search(f'"{self.entity_name}" linkedin', 3)
        for r in results:
            self.take_linkedin(r.url)
