"""
roundgraph - HTTP API

Funding-news extraction, round grouping, graph sync and entity enrichment
behind one FastAPI app. Collaborators (graph store, article store,
oracles) are built by the get_* dependencies below so tests can override
them with app.dependency_overrides.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Security
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field, field_validator

from .analyst import FundingExtraction, FundingExtractor, GroupedRound, LLMFundingOracle
from .analyst.grouper import SORT_FIELDS, group, sort_rounds
from .analyst.oracle import create_llm_client
from .analyst.schemas import ArticleSource, coerce_stage
from .archivist import ArticleStore, SqlArticleStore
from .archivist.database import close_db
from .common.brave_client import BraveClient
from .common.errors import RoundgraphError
from .config.settings import settings
from .enrichment import (
    CompanyEnricher,
    EnrichmentReport,
    EntityNotFoundError,
    InvestorEnricher,
    LLMCompanyFieldExtractor,
    LLMInvestorFieldExtractor,
    LLMWebsiteSuggester,
    LLMWebVerifier,
    WebsiteDiscovery,
)
from .graph import (
    GraphStore,
    GraphStoreError,
    GraphSynchronizer,
    GraphSyncResult,
    GraphSyncSummary,
    RoundSyncInput,
    SyncArticle,
    create_graph_store,
)

logger = logging.getLogger(__name__)


# ----- Shared collaborators -----

_graph_store: Optional[GraphStore] = None
_brave_client: Optional[BraveClient] = None
_llm_client = None


def get_graph_store() -> GraphStore:
    """Process-wide graph store, created on first use."""
    global _graph_store
    if _graph_store is None:
        _graph_store = create_graph_store(settings)
    return _graph_store


def get_article_store() -> ArticleStore:
    return SqlArticleStore()


def _get_llm_client():
    global _llm_client
    if _llm_client is None:
        _llm_client = create_llm_client(settings)
    return _llm_client


def _get_brave_client() -> BraveClient:
    global _brave_client
    if _brave_client is None:
        _brave_client = BraveClient(settings)
    return _brave_client


def get_funding_extractor() -> FundingExtractor:
    """Oracle-backed when an Anthropic key is configured, deterministic otherwise."""
    if not settings.anthropic_api_key:
        return FundingExtractor()
    return FundingExtractor(oracle=LLMFundingOracle(settings, client=_get_llm_client()))


def _enricher_kwargs(store: GraphStore, article_store: ArticleStore) -> dict:
    client = _get_llm_client()
    verifier = LLMWebVerifier(settings, client=client)
    discovery = WebsiteDiscovery(
        verifier,
        suggester=LLMWebsiteSuggester(settings, client=client),
        search=_get_brave_client(),
        config=settings,
    )
    return {
        "store": store,
        "verifier": verifier,
        "discovery": discovery,
        "article_store": article_store,
        "config": settings,
    }


def get_company_enricher(
    store: GraphStore = Depends(get_graph_store),
    article_store: ArticleStore = Depends(get_article_store),
) -> CompanyEnricher:
    return CompanyEnricher(
        **_enricher_kwargs(store, article_store),
        extractor=LLMCompanyFieldExtractor(settings, client=_get_llm_client()),
    )


def get_investor_enricher(
    store: GraphStore = Depends(get_graph_store),
    article_store: ArticleStore = Depends(get_article_store),
) -> InvestorEnricher:
    return InvestorEnricher(
        **_enricher_kwargs(store, article_store),
        extractor=LLMInvestorFieldExtractor(settings, client=_get_llm_client()),
    )


# ----- API Key Security -----

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """Verify API key for protected endpoints."""
    if not api_key:
        raise HTTPException(status_code=401, detail="API key required")
    if api_key not in settings.valid_api_keys:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return api_key


def _raise_http(e: Exception, action: str):
    """Map a domain failure onto an HTTP error (always raises)."""
    if isinstance(e, GraphStoreError):
        logger.error(f"{action} failed, graph store unavailable: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Graph store unavailable")
    if isinstance(e, EntityNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, RoundgraphError):
        logger.error(f"{action} failed, upstream error: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail="Upstream service error")
    if isinstance(e, ValueError):
        raise HTTPException(status_code=400, detail=str(e))
    logger.error(f"{action} failed: {e}", exc_info=True)
    raise HTTPException(status_code=500, detail="Internal server error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"Starting roundgraph (graph backend: {settings.graph_backend})")

    yield

    logger.info("Shutting down...")
    if _graph_store is not None:
        try:
            await _graph_store.close()
        except GraphStoreError as e:
            logger.warning(f"Error closing graph store: {e}")
    if _brave_client is not None:
        await _brave_client.close()
    await close_db()


app = FastAPI(
    title="roundgraph",
    description="Funding-round extraction, grouping and graph enrichment",
    version="0.1.0",
    lifespan=lifespan,
)


# ----- Request / Response Models -----

class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    graph_backend: str


class ExtractRequest(BaseModel):
    title: str
    content: str = ""
    article_id: Optional[int] = None  # Persist the extraction for this article when set


class ExtractResponse(BaseModel):
    extraction: Optional[FundingExtraction] = None
    saved: bool = False


class GroupedRequest(BaseModel):
    stage: Optional[str] = None
    country: Optional[str] = None
    search: Optional[str] = None
    sort_by: str = "last_seen"
    sort_order: str = "desc"

    @field_validator("sort_by")
    @classmethod
    def validate_sort_by(cls, v: str) -> str:
        if v not in SORT_FIELDS:
            raise ValueError(f"Invalid sort_by '{v}'. Valid values: {list(SORT_FIELDS)}")
        return v

    @field_validator("sort_order")
    @classmethod
    def validate_sort_order(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("asc", "desc"):
            raise ValueError("sort_order must be 'asc' or 'desc'")
        return v


class IngestRequest(BaseModel):
    key: str
    article_ids: List[int] = Field(default_factory=list)


class IngestResponse(BaseModel):
    key: str
    company_name: str
    amount_usd: Optional[float] = None
    stage: Optional[str] = None
    investors: List[str] = Field(default_factory=list)
    country: Optional[str] = None
    confidence: float
    articles_ingested: int
    graph: GraphSyncSummary


class LockFieldRequest(BaseModel):
    entity_type: str
    entity_name: str
    field: str
    locked: bool = True


class LockFieldResponse(BaseModel):
    entity_type: str
    entity_name: str
    locked_fields: List[str]


class EnrichRequest(BaseModel):
    name: str


# ----- Background enrichment -----

async def enrich_after_ingest(
    company_enricher: CompanyEnricher,
    investor_enricher: InvestorEnricher,
    company_name: str,
    investors: Sequence[str],
):
    """Enrich the company, then each investor in turn; failures are logged, never raised."""
    try:
        await company_enricher.enrich(company_name)
    except (RoundgraphError, ValueError) as e:
        logger.warning(f"Auto-enrich of company {company_name!r} failed: {e}")
    for name in investors:
        try:
            await investor_enricher.enrich(name)
        except (RoundgraphError, ValueError) as e:
            logger.warning(f"Auto-enrich of investor {name!r} failed: {e}")
    logger.info(f"Auto-enrich done: {company_name} + {len(investors)} investors")


# ----- Endpoints -----

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Liveness probe (no store round-trip)."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        graph_backend=settings.graph_backend,
    )


@app.post("/extract", response_model=ExtractResponse)
async def extract_funding(
    request: ExtractRequest,
    _: str = Depends(verify_api_key),
    extractor: FundingExtractor = Depends(get_funding_extractor),
    article_store: ArticleStore = Depends(get_article_store),
):
    """Extract one funding event from article text; optionally persist it for the article."""
    try:
        extraction = await extractor.extract(request.title, request.content)
        saved = False
        if extraction is not None and request.article_id is not None:
            await article_store.save_funding_record(request.article_id, extraction)
            saved = True
        return ExtractResponse(extraction=extraction, saved=saved)
    except HTTPException:
        raise
    except Exception as e:
        _raise_http(e, "Extraction")


@app.post("/funding/grouped", response_model=List[GroupedRound])
async def grouped_funding(
    request: GroupedRequest,
    _: str = Depends(verify_api_key),
    article_store: ArticleStore = Depends(get_article_store),
):
    """Persisted extractions clustered into funding events, filtered and sorted."""
    try:
        records = await article_store.list_funding_records()
    except Exception as e:
        _raise_http(e, "Loading funding records")

    stage = coerce_stage(request.stage) if request.stage else None
    search = request.search.strip().lower() if request.search else None

    candidates = []
    for record in records:
        if request.stage and coerce_stage(record.stage) != stage:
            continue
        if request.country and (record.country or "").lower() != request.country.lower():
            continue
        if search:
            title = record.article.title if record.article else ""
            if search not in record.company_name.lower() and search not in title.lower():
                continue
        candidates.append(record.to_candidate())

    rounds = group(candidates)
    return sort_rounds(rounds, request.sort_by, descending=request.sort_order == "desc")


@app.post("/funding/ingest", response_model=IngestResponse)
async def ingest_round(
    request: IngestRequest,
    background_tasks: BackgroundTasks,
    _: str = Depends(verify_api_key),
    extractor: FundingExtractor = Depends(get_funding_extractor),
    article_store: ArticleStore = Depends(get_article_store),
    store: GraphStore = Depends(get_graph_store),
    company_enricher: CompanyEnricher = Depends(get_company_enricher),
    investor_enricher: InvestorEnricher = Depends(get_investor_enricher),
):
    """
    Commit one grouped round: cross-reference its articles, sync the result
    to the graph, stamp the articles as ingested and enrich in the background.
    """
    if not request.key or not request.article_ids:
        raise HTTPException(status_code=400, detail="key and article_ids required")

    try:
        articles = await article_store.get_articles_by_ids(request.article_ids)
        if not articles:
            raise HTTPException(status_code=404, detail="No articles found")

        extraction = await extractor.extract_from_sources(
            [ArticleSource(title=a.title, content=a.content or a.title) for a in articles]
        )
        if extraction is None:
            raise HTTPException(status_code=422, detail="No funding round identified in these articles")

        summary = await GraphSynchronizer(store).sync_round(RoundSyncInput(
            company_name=extraction.company_name,
            amount_usd=extraction.amount_usd,
            currency=extraction.currency,
            stage=extraction.stage,
            investors=extraction.investors,
            lead_investor=extraction.lead_investor,
            country=extraction.country,
            confidence=extraction.confidence,
            company_meta=extraction.company_meta,
            articles=[
                SyncArticle(id=a.id, url=a.url, title=a.title, published_at=a.published_at, author=a.author)
                for a in articles
            ],
        ))
        await article_store.mark_ingested([a.id for a in articles])
    except HTTPException:
        raise
    except Exception as e:
        _raise_http(e, f"Ingest of {request.key}")

    investors = list(dict.fromkeys(
        extraction.investors + ([extraction.lead_investor] if extraction.lead_investor else [])
    ))
    background_tasks.add_task(
        enrich_after_ingest, company_enricher, investor_enricher, extraction.company_name, investors
    )

    return IngestResponse(
        key=request.key,
        company_name=extraction.company_name,
        amount_usd=extraction.amount_usd,
        stage=extraction.stage.value if extraction.stage else None,
        investors=extraction.investors,
        country=extraction.country,
        confidence=extraction.confidence,
        articles_ingested=len(articles),
        graph=summary,
    )


@app.post("/graph/sync", response_model=GraphSyncResult)
async def sync_graph(
    _: str = Depends(verify_api_key),
    store: GraphStore = Depends(get_graph_store),
    article_store: ArticleStore = Depends(get_article_store),
):
    """Bulk rebuild of the graph from every persisted extraction."""
    try:
        return await GraphSynchronizer(store, article_store=article_store).sync_all()
    except Exception as e:
        _raise_http(e, "Graph sync")


@app.post("/graph/lock-field", response_model=LockFieldResponse)
async def lock_field(
    request: LockFieldRequest,
    _: str = Depends(verify_api_key),
    store: GraphStore = Depends(get_graph_store),
):
    """Lock (or unlock) one field so enrichment never overwrites it."""
    try:
        fields = await GraphSynchronizer(store).set_locked_field(
            request.entity_type, request.entity_name, request.field, request.locked
        )
    except Exception as e:
        _raise_http(e, "Lock field")

    if fields is None:
        raise HTTPException(status_code=404, detail=f"{request.entity_type} '{request.entity_name}' not found")
    return LockFieldResponse(
        entity_type=request.entity_type,
        entity_name=request.entity_name,
        locked_fields=fields,
    )


@app.post("/enrich/company", response_model=EnrichmentReport)
async def enrich_company(
    request: EnrichRequest,
    _: str = Depends(verify_api_key),
    enricher: CompanyEnricher = Depends(get_company_enricher),
):
    try:
        return await enricher.enrich(request.name)
    except Exception as e:
        _raise_http(e, f"Company enrichment of {request.name!r}")


@app.post("/enrich/investor", response_model=EnrichmentReport)
async def enrich_investor(
    request: EnrichRequest,
    _: str = Depends(verify_api_key),
    enricher: InvestorEnricher = Depends(get_investor_enricher),
):
    try:
        return await enricher.enrich(request.name)
    except Exception as e:
        _raise_http(e, f"Investor enrichment of {request.name!r}")
