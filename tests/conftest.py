"""
Pytest fixtures for test infrastructure.

This module is automatically loaded by pytest and provides shared fixtures:
an in-memory graph store, an in-memory article store, sample articles and
oracle doubles. Nothing here touches the network, Postgres or Neo4j.
"""

from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import httpx
import pytest

from roundgraph.analyst.schemas import FundingExtraction
from roundgraph.archivist.storage import StoredArticle, StoredFundingRecord
from roundgraph.common.url_utils import get_domain
from roundgraph.enrichment.verifier import VerificationResult
from roundgraph.graph.memory_store import InMemoryGraphStore


# =============================================================================
# Doubles
# =============================================================================
class FakeArticleStore:
    """ArticleStore held in lists; records every write for assertions."""

    def __init__(
        self,
        articles: Optional[List[StoredArticle]] = None,
        records: Optional[List[StoredFundingRecord]] = None,
    ):
        self.articles = list(articles or [])
        self.records = list(records or [])
        self.saved: Dict[int, FundingExtraction] = {}
        self.ingested: List[int] = []

    async def list_funding_records(self, since: Optional[datetime] = None) -> List[StoredFundingRecord]:
        if since is None:
            return list(self.records)
        return [r for r in self.records if r.created_at >= since]

    async def get_articles_by_urls(self, urls: Sequence[str]) -> List[StoredArticle]:
        wanted = set(urls)
        return [a for a in self.articles if a.url in wanted]

    async def get_articles_by_ids(self, article_ids: Sequence[int]) -> List[StoredArticle]:
        wanted = set(article_ids)
        return [a for a in self.articles if a.id in wanted]

    async def search_articles(self, term: str, limit: int = 10) -> List[StoredArticle]:
        term = term.strip().lower()
        if not term:
            return []
        hits = [a for a in self.articles if term in a.title.lower() or term in a.content.lower()]
        return hits[:limit]

    async def mark_ingested(self, article_ids: Sequence[int], when: Optional[datetime] = None) -> int:
        ids = [i for i in article_ids if i is not None]
        self.ingested.extend(ids)
        return len(ids)

    async def save_funding_record(self, article_id: int, extraction: FundingExtraction) -> None:
        self.saved[article_id] = extraction


class StaticVerifier:
    """WebVerificationOracle accepting exactly the URLs whose domain is in `accept`."""

    def __init__(self, accept: Sequence[str] = ()):
        self.accept = set(accept)
        self.calls: List[str] = []

    async def verify(self, entity_name, url, html, context, entity_type="company") -> VerificationResult:
        self.calls.append(url)
        if get_domain(url) in self.accept:
            return VerificationResult(match=True, reason="About page names the entity")
        return VerificationResult(match=False, reason="Different business")


def mock_http(pages: Mapping[str, Tuple[int, str]]) -> httpx.AsyncClient:
    """AsyncClient answering from {host: (status, html)}; unknown hosts refuse to connect."""

    def handler(request):
        host = request.url.host.removeprefix("www.")
        if host not in pages:
            raise httpx.ConnectError("connection refused", request=request)
        status, html = pages[host]
        return httpx.Response(status, text=html)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# =============================================================================
# Shared fixtures
# =============================================================================
@pytest.fixture
def graph_store():
    """Fresh in-memory graph store per test."""
    return InMemoryGraphStore()


@pytest.fixture
def sample_articles():
    """Two articles about the same Sunbird round."""
    return [
        StoredArticle(
            id=1,
            url="https://techcrunch.com/2024/05/02/sunbird-series-a",
            title="Sunbird raises $12M Series A led by Acme Ventures",
            content=(
                "<p>Berlin-based Sunbird has raised $12M in a Series A round led by Acme Ventures, "
                "with participation from Northwind Capital. "
                'Read more on <a href="https://sunbird.io/blog">the Sunbird blog</a>.</p>'
            ),
            author="Jane Doe",
            feed_title="TechCrunch",
            published_at=datetime(2024, 5, 2, 9, 0),
        ),
        StoredArticle(
            id=2,
            url="https://sifted.eu/articles/sunbird-funding",
            title="Sunbird secures $12 million to scale solar logistics",
            content="<p>Sunbird, the Berlin solar logistics startup, secured $12 million in Series A funding.</p>",
            feed_title="Sifted",
            published_at=datetime(2024, 5, 3, 14, 30),
        ),
    ]


@pytest.fixture
def article_store(sample_articles):
    """FakeArticleStore preloaded with the sample articles."""
    return FakeArticleStore(articles=sample_articles)


@pytest.fixture
def sample_article_text():
    """Sample press release for deterministic extraction."""
    return """
    Sunbird raises $12M Series A led by Acme Ventures

    BERLIN, May 2, 2024 - Sunbird, the solar logistics startup, today announced it has raised
    $12 million in Series A funding. The round was led by Acme Ventures, with participation
    from Northwind Capital.
    """
