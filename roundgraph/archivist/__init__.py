"""Article store models and access."""

from .models import Article, FundingRecord
from .storage import ArticleStore, SqlArticleStore, StoredArticle, StoredFundingRecord

__all__ = [
    "Article",
    "FundingRecord",
    "ArticleStore",
    "SqlArticleStore",
    "StoredArticle",
    "StoredFundingRecord",
]
