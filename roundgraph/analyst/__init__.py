from .schemas import (
    ArticleRef,
    ArticleSource,
    CompanyMeta,
    FundingExtraction,
    FundingStage,
    GroupCandidate,
    GroupedRound,
)
from .normalizer import normalize_company, normalize_investor, normalize_stage, make_round_key
from .scorer import extract, score
from .extractor import FundingExtractor
from .oracle import FundingOracle, LLMFundingOracle, OracleError
from .grouper import group, sort_rounds

__all__ = [
    "ArticleRef",
    "ArticleSource",
    "CompanyMeta",
    "FundingExtraction",
    "FundingStage",
    "GroupCandidate",
    "GroupedRound",
    "normalize_company",
    "normalize_investor",
    "normalize_stage",
    "make_round_key",
    "extract",
    "score",
    "FundingExtractor",
    "FundingOracle",
    "LLMFundingOracle",
    "OracleError",
    "group",
    "sort_rounds",
]
