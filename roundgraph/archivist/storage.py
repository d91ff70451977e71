"""
Article store access.

Module-level query functions take an AsyncSession (as the API does for
request-scoped work); SqlArticleStore wraps them behind the ArticleStore
protocol for the graph synchronizer and the enrichers, which open their
own sessions.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import or_, select, update, nullslast
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..analyst.schemas import ArticleRef, FundingExtraction, GroupCandidate
from .database import get_session
from .models import Article, FundingRecord, utc_now_naive

logger = logging.getLogger(__name__)


class StoredArticle(BaseModel):
    """Read-only view of an article row."""
    id: Optional[int] = None
    url: str
    title: str = ""
    content: str = ""
    author: Optional[str] = None
    feed_title: Optional[str] = None
    published_at: Optional[datetime] = None
    ingested_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, article: Article) -> "StoredArticle":
        return cls(
            id=article.id,
            url=article.url,
            title=article.title,
            content=article.content or "",
            author=article.author,
            feed_title=article.feed_title,
            published_at=article.published_at,
            ingested_at=article.ingested_at,
        )


class StoredFundingRecord(BaseModel):
    """A persisted per-article extraction joined with its article."""
    article_id: int
    company_name: str
    amount: Optional[float] = None
    currency: str = "USD"
    amount_usd: Optional[float] = None
    stage: Optional[str] = None
    investors: List[str] = Field(default_factory=list)
    lead_investor: Optional[str] = None
    country: Optional[str] = None
    confidence: float = 0.0
    fired_signals: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now_naive)
    article: Optional[StoredArticle] = None

    @classmethod
    def from_rows(cls, record: FundingRecord, article: Optional[Article]) -> "StoredFundingRecord":
        return cls(
            article_id=record.article_id,
            company_name=record.company_name,
            amount=record.amount,
            currency=record.currency,
            amount_usd=record.amount_usd,
            stage=record.stage,
            investors=list(record.investors or []),
            lead_investor=record.lead_investor,
            country=record.country,
            confidence=record.confidence,
            fired_signals=list(record.fired_signals or []),
            created_at=record.created_at,
            article=StoredArticle.from_row(article) if article is not None else None,
        )

    def to_extraction(self) -> FundingExtraction:
        return FundingExtraction(
            company_name=self.company_name,
            amount=self.amount,
            currency=self.currency,
            amount_usd=self.amount_usd,
            stage=self.stage,
            investors=self.investors,
            lead_investor=self.lead_investor,
            country=self.country,
            confidence=self.confidence,
            fired_signals=self.fired_signals,
        )

    def to_candidate(self) -> GroupCandidate:
        """Grouping input: publication time when known, else extraction time."""
        article = self.article
        source = ArticleRef(
            article_id=str(self.article_id),
            url=article.url if article else f"article:{self.article_id}",
            title=article.title if article else "",
            feed_title=article.feed_title if article else None,
            confidence=self.confidence,
            published_at=article.published_at if article else None,
        )
        seen_at = (article.published_at if article and article.published_at else None) or self.created_at
        return GroupCandidate(
            extraction=self.to_extraction(),
            source=source,
            seen_at=seen_at,
            ingested_at=article.ingested_at if article else None,
        )


class ArticleStore(Protocol):
    """What the synchronizer, the enrichers and the API read from the article store."""

    async def list_funding_records(self, since: Optional[datetime] = None) -> List[StoredFundingRecord]:
        ...

    async def get_articles_by_urls(self, urls: Sequence[str]) -> List[StoredArticle]:
        ...

    async def get_articles_by_ids(self, article_ids: Sequence[int]) -> List[StoredArticle]:
        ...

    async def search_articles(self, term: str, limit: int = 10) -> List[StoredArticle]:
        ...

    async def mark_ingested(self, article_ids: Sequence[int], when: Optional[datetime] = None) -> int:
        ...

    async def save_funding_record(self, article_id: int, extraction: FundingExtraction) -> None:
        ...


# =============================================================================
# QUERIES
# =============================================================================

async def list_funding_records(
    session: AsyncSession,
    since: Optional[datetime] = None,
) -> List[StoredFundingRecord]:
    """All funding records with their articles, oldest first."""
    stmt = (
        select(FundingRecord, Article)
        .join(Article, FundingRecord.article_id == Article.id, isouter=True)
        .order_by(FundingRecord.created_at)
    )
    if since is not None:
        stmt = stmt.where(FundingRecord.created_at >= since)
    result = await session.execute(stmt)
    return [StoredFundingRecord.from_rows(record, article) for record, article in result.all()]


async def get_articles_by_urls(session: AsyncSession, urls: Sequence[str]) -> List[StoredArticle]:
    if not urls:
        return []
    result = await session.execute(select(Article).where(Article.url.in_(list(urls))))
    return [StoredArticle.from_row(a) for a in result.scalars().all()]


async def get_articles_by_ids(session: AsyncSession, article_ids: Sequence[int]) -> List[StoredArticle]:
    if not article_ids:
        return []
    result = await session.execute(select(Article).where(Article.id.in_(list(article_ids))))
    return [StoredArticle.from_row(a) for a in result.scalars().all()]


async def search_articles(session: AsyncSession, term: str, limit: int = 10) -> List[StoredArticle]:
    """Newest articles whose title or content mention the term (case-insensitive)."""
    term = term.strip()
    if not term:
        return []
    pattern = f"%{term}%"
    stmt = (
        select(Article)
        .where(or_(Article.title.ilike(pattern), Article.content.ilike(pattern)))
        .order_by(nullslast(Article.published_at.desc()))
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [StoredArticle.from_row(a) for a in result.scalars().all()]


async def mark_ingested(
    session: AsyncSession,
    article_ids: Sequence[int],
    when: Optional[datetime] = None,
) -> int:
    """Stamp articles whose round was committed to the graph. Returns rows updated."""
    ids = [i for i in article_ids if i is not None]
    if not ids:
        return 0
    stmt = update(Article).where(Article.id.in_(ids)).values(ingested_at=when or utc_now_naive())
    result = await session.execute(stmt)
    return result.rowcount or 0


async def save_funding_record(session: AsyncSession, article_id: int, extraction: FundingExtraction) -> None:
    """Upsert the extraction for one article (re-extraction replaces the previous row)."""
    values = {
        "article_id": article_id,
        "company_name": extraction.company_name,
        "amount": extraction.amount,
        "currency": extraction.currency,
        "amount_usd": int(extraction.amount_usd) if extraction.amount_usd is not None else None,
        "stage": extraction.stage.value if extraction.stage else None,
        "investors": extraction.investors,
        "lead_investor": extraction.lead_investor,
        "country": extraction.country,
        "confidence": extraction.confidence,
        "fired_signals": extraction.fired_signals,
        "created_at": utc_now_naive(),
    }
    stmt = pg_insert(FundingRecord).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[FundingRecord.article_id],
        set_={k: v for k, v in values.items() if k != "article_id"},
    )
    await session.execute(stmt)
    logger.debug(f"Saved funding record for article {article_id}: {extraction.company_name}")


class SqlArticleStore:
    """ArticleStore over the relational database, one session per call."""

    def __init__(self, session_factory: Callable = get_session):
        self.session_factory = session_factory

    async def list_funding_records(self, since: Optional[datetime] = None) -> List[StoredFundingRecord]:
        async with self.session_factory() as session:
            return await list_funding_records(session, since)

    async def get_articles_by_urls(self, urls: Sequence[str]) -> List[StoredArticle]:
        async with self.session_factory() as session:
            return await get_articles_by_urls(session, urls)

    async def get_articles_by_ids(self, article_ids: Sequence[int]) -> List[StoredArticle]:
        async with self.session_factory() as session:
            return await get_articles_by_ids(session, article_ids)

    async def search_articles(self, term: str, limit: int = 10) -> List[StoredArticle]:
        async with self.session_factory() as session:
            return await search_articles(session, term, limit)

    async def mark_ingested(self, article_ids: Sequence[int], when: Optional[datetime] = None) -> int:
        async with self.session_factory() as session:
            return await mark_ingested(session, article_ids, when)

    async def save_funding_record(self, article_id: int, extraction: FundingExtraction) -> None:
        async with self.session_factory() as session:
            await save_funding_record(session, article_id, extraction)
