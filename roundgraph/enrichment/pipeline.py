"""
Sequential per-entity enrichment.

    articles -> website (verify stored / discover) -> extract -> save

Every graph write happens in the save stage. An exception raised earlier
(OracleError from an extractor, GraphStoreError) aborts the run and leaves
the entity exactly as it was, stale website included.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from ..archivist.models import utc_now_naive
from ..archivist.storage import ArticleStore, StoredArticle
from ..common.errors import RoundgraphError
from ..common.http_client import create_fetch_client
from ..common.url_utils import get_domain, is_valid_website_url
from ..config.settings import Settings, settings as default_settings
from ..graph.store import ARTICLE, GraphStore
from ..graph.write_policy import FieldValue, apply_field_writes, clear_field
from .discovery import WebsiteDiscovery, article_context
from .verifier import WebVerificationOracle, fetch_page, scrape_page_text, strip_html

logger = logging.getLogger(__name__)

ARTICLE_TEXT_CHARS = 3000
ARTICLE_NODE_CONTENT_CHARS = 5000
SEARCH_FALLBACK_LIMIT = 5

# Cleared together when a stored website turns out to belong to someone else
WEBSITE_FIELDS = ("website", "linkedinUrl")


class EntityNotFoundError(RoundgraphError):
    """The entity to enrich has no node in the graph."""
    pass


class StageMessage(BaseModel):
    stage: str
    message: str


class EnrichmentReport(BaseModel):
    """Outcome of one enrichment run."""
    entity_type: str
    name: str
    fields_updated: List[str] = Field(default_factory=list)
    website: Optional[str] = None
    stages: List[StageMessage] = Field(default_factory=list)

    def log(self, stage: str, message: str) -> None:
        logger.info(f"[{self.entity_type} {self.name!r}] {stage}: {message}")
        self.stages.append(StageMessage(stage=stage, message=message))


@dataclass
class WebsiteState:
    url: Optional[str] = None
    text: Optional[str] = None
    linkedin_url: Optional[str] = None
    clear_stale: bool = False


@dataclass
class SavePlan:
    """Everything the save stage writes."""
    proposals: Dict[str, FieldValue] = field(default_factory=dict)
    location: Optional[FieldValue] = None


class EntityEnricher:
    """
    Base pipeline shared by company and investor enrichment.

    Subclasses set `entity_type`, `label` and `rel_type` (the edge from the
    entity to its FundingRounds) and implement `normalize()` and
    `extract()`.
    """

    entity_type = ""
    label = ""
    rel_type = ""

    def __init__(
        self,
        store: GraphStore,
        verifier: WebVerificationOracle,
        discovery: WebsiteDiscovery,
        article_store: Optional[ArticleStore] = None,
        config: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.verifier = verifier
        self.discovery = discovery
        self.article_store = article_store
        self.config = config or default_settings
        self.http_client = http_client

    def normalize(self, name: str) -> str:
        raise NotImplementedError

    async def extract(
        self, name: str, article_texts: List[str], website: WebsiteState, report: EnrichmentReport
    ) -> SavePlan:
        raise NotImplementedError

    def verification_context(self, name: str, articles: List[StoredArticle]) -> str:
        return article_context(articles)

    # -------------------------------------------------------------------------

    async def enrich(self, name: str) -> EnrichmentReport:
        """
        Run all stages for one entity.

        Raises:
            ValueError: name normalizes to nothing
            EntityNotFoundError: no node for this entity
            OracleError / GraphStoreError: fatal, nothing was written
        """
        key = self.normalize(name)
        if not key:
            raise ValueError(f"Cannot enrich {name!r}: empty normalized name")

        node = await self.store.get_node(self.label, key)
        if node is None:
            raise EntityNotFoundError(f"{self.label} {key!r} not found")

        report = EnrichmentReport(entity_type=self.entity_type, name=name)

        articles = await self.load_articles(name, key)
        article_texts = [
            t for t in ((strip_html(a.content) if a.content else a.title)[:ARTICLE_TEXT_CHARS] for a in articles)
            if t
        ]
        report.log("articles", f"{len(articles)} article{'s' if len(articles) != 1 else ''} loaded")

        website = await self.resolve_website(name, node, articles, report)
        report.website = website.url

        if not article_texts and not website.text:
            report.log("error", "No sources available for enrichment")
            return report

        plan = await self.extract(name, article_texts, website, report)
        self.add_discovered(plan, website)

        report.fields_updated = await self.save(key, plan, website, articles)
        report.log("save", f"Graph updated ({len(report.fields_updated)} fields)")
        return report

    # -------------------------------------------------------------------------

    async def load_articles(self, name: str, key: str) -> List[StoredArticle]:
        """Articles behind the entity's funding rounds; a name search when none are linked."""
        if self.article_store is None:
            return []
        urls = await self.store.source_article_urls(self.label, key, self.rel_type)
        if urls:
            return await self.article_store.get_articles_by_urls(urls)
        return await self.article_store.search_articles(name, limit=SEARCH_FALLBACK_LIMIT)

    async def resolve_website(
        self, name: str, node: Dict[str, Any], articles: List[StoredArticle], report: EnrichmentReport
    ) -> WebsiteState:
        state = WebsiteState()
        stored = node.get("website")

        if is_valid_website_url(stored):
            verdict = await self.verify_stored(name, stored, articles)
            if verdict is None:
                report.log("website", f"{get_domain(stored)} unreachable, re-discovering")
            elif verdict[0]:
                state.url, state.text = stored, scrape_page_text(verdict[1])
                report.log("website", f"{get_domain(stored)} verified")
                return state
            else:
                state.clear_stale = True
                report.log("website", f"{get_domain(stored)} doesn't match, re-discovering")

        result = await self.discovery.discover(name, articles, entity_type=self.entity_type)
        state.linkedin_url = result.linkedin_url
        if result.website:
            state.url = result.website
            state.text = scrape_page_text(result.html) if result.html else None
            report.log("website", f"Discovered {get_domain(result.website)}")
        else:
            report.log("website", f"No website found ({result.oracle_attempts} oracle attempts)")
        return state

    async def verify_stored(self, name: str, url: str, articles: List[StoredArticle]):
        """(match, html) for the stored website, or None when it cannot be fetched."""
        owns_client = self.http_client is None
        client = self.http_client or create_fetch_client(timeout=self.config.verify_fetch_timeout)
        try:
            page = await fetch_page(client, url)
        finally:
            if owns_client:
                await client.aclose()
        if page is None:
            return None
        verdict = await self.verifier.verify(
            name, page.url, page.html, self.verification_context(name, articles), entity_type=self.entity_type
        )
        return verdict.match, page.html

    def add_discovered(self, plan: SavePlan, website: WebsiteState) -> None:
        confidence = self.config.discovered_field_confidence
        if "website" not in plan.proposals and website.url:
            plan.proposals["website"] = FieldValue(website.url, confidence)
        if "linkedinUrl" not in plan.proposals and website.linkedin_url:
            plan.proposals["linkedinUrl"] = FieldValue(website.linkedin_url, confidence)

    async def save(
        self, key: str, plan: SavePlan, website: WebsiteState, articles: List[StoredArticle]
    ) -> List[str]:
        if website.clear_stale:
            for prop in WEBSITE_FIELDS:
                await clear_field(self.store, self.label, key, prop)

        writes = await apply_field_writes(
            self.store,
            self.label,
            key,
            plan.proposals,
            threshold=self.config.overwrite_confidence_threshold,
        )
        updated = sorted(writes)

        if plan.location is not None and await self.save_location(key, plan.location):
            updated.append("location")

        await self.store.set_properties(self.label, key, {"enrichedAt": utc_now_naive().isoformat()})

        for article in articles:
            if article.content:
                await self.store.set_properties(
                    ARTICLE, article.url, {"content": strip_html(article.content)[:ARTICLE_NODE_CONTENT_CHARS]}
                )
        return updated

    async def save_location(self, key: str, location: FieldValue) -> bool:
        return False
