"""
Database models using SQLModel (SQLAlchemy + Pydantic).

Schema:
- Article: Raw news articles pulled from feeds (read-only for roundgraph)
- FundingRecord: One persisted extraction per funding article

The schema is owned and migrated by the feed poller that writes articles.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import BigInteger, Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, Relationship, SQLModel


def utc_now_naive() -> datetime:
    """Return current UTC time as timezone-naive datetime.

    PostgreSQL TIMESTAMP WITHOUT TIME ZONE columns require naive datetimes.
    Using timezone-aware datetimes causes asyncpg DataError.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Article(SQLModel, table=True):
    """A news article from a monitored feed."""
    __tablename__ = "articles"

    id: Optional[int] = Field(default=None, primary_key=True)
    url: str = Field(unique=True, index=True)
    title: str
    content: Optional[str] = None
    author: Optional[str] = None
    feed_title: Optional[str] = None
    published_at: Optional[datetime] = Field(default=None, index=True)
    fetched_at: datetime = Field(default_factory=utc_now_naive)

    # Set when the round this article supports was committed to the graph
    ingested_at: Optional[datetime] = None

    funding_record: Optional["FundingRecord"] = Relationship(
        back_populates="article",
        sa_relationship_kwargs={"uselist": False},
    )


class FundingRecord(SQLModel, table=True):
    """Persisted extraction for one article (at most one per article)."""
    __tablename__ = "funding_records"

    id: Optional[int] = Field(default=None, primary_key=True)
    article_id: int = Field(foreign_key="articles.id", unique=True, index=True)

    company_name: str = Field(index=True)
    amount: Optional[float] = None
    currency: str = "USD"
    amount_usd: Optional[int] = Field(default=None, sa_column=Column(BigInteger))  # BIGINT for >$2.1B rounds
    stage: Optional[str] = None  # Display value, e.g. "Series A"
    investors: List[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False, server_default="[]"))
    lead_investor: Optional[str] = None
    country: Optional[str] = None
    confidence: float = 0.0
    fired_signals: List[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False, server_default="[]"))
    created_at: datetime = Field(default_factory=utc_now_naive, index=True)

    article: Optional[Article] = Relationship(back_populates="funding_record")
