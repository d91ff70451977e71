"""Entity enrichment: website discovery and verification, extraction, trust merge."""

from .trust import (
    CompanyFields,
    InvestorArticleFields,
    InvestorWebsiteFields,
    field_values,
    merge_field_sets,
)
from .verifier import LLMWebVerifier, VerificationResult, WebVerificationOracle, validate_and_verify
from .discovery import DiscoveryResult, DiscoveryState, LLMWebsiteSuggester, WebsiteDiscovery
from .extractors import LLMCompanyFieldExtractor, LLMInvestorFieldExtractor
from .pipeline import EnrichmentReport, EntityNotFoundError
from .company import CompanyEnricher
from .investor import InvestorEnricher

__all__ = [
    "CompanyFields",
    "InvestorArticleFields",
    "InvestorWebsiteFields",
    "field_values",
    "merge_field_sets",
    "LLMWebVerifier",
    "VerificationResult",
    "WebVerificationOracle",
    "validate_and_verify",
    "DiscoveryResult",
    "DiscoveryState",
    "LLMWebsiteSuggester",
    "WebsiteDiscovery",
    "LLMCompanyFieldExtractor",
    "LLMInvestorFieldExtractor",
    "EnrichmentReport",
    "EntityNotFoundError",
    "CompanyEnricher",
    "InvestorEnricher",
]
