"""
Tests for website discovery.

Covers the state machine transitions, the oracle attempt cap, rejected
domains never being re-fetched, article link mining and soft failure of
web search.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import StaticVerifier, mock_http
from roundgraph.analyst.oracle import OracleError
from roundgraph.common.brave_client import BraveAPIError, BraveSearchResult
from roundgraph.config.settings import Settings
from roundgraph.enrichment.discovery import (
    DiscoveryState,
    LLMWebsiteSuggester,
    WebsiteDiscovery,
    WebsiteSuggestions,
    article_context,
)

PAGE = (
    "<html><head><title>Sunbird</title></head><body><p>"
    "Sunbird plans, stores and delivers photovoltaic hardware for installers across Europe."
    "</p></body></html>"
)
LINKEDIN = "https://www.linkedin.com/company/sunbird-solar"


def search_double(*results, enabled=True):
    """BraveClient stand-in returning one result list per call."""
    search = MagicMock()
    search.enabled = enabled
    search.search_web = AsyncMock(side_effect=list(results))
    return search


def suggester_double(*answers):
    suggester = MagicMock()
    suggester.suggest = AsyncMock(side_effect=list(answers))
    return suggester


# =============================================================================
# Primary search
# =============================================================================
class TestPrimarySearch:

    @pytest.mark.asyncio
    async def test_found_by_search(self):
        search = search_double([
            BraveSearchResult(title="Sunbird | LinkedIn", url=LINKEDIN),
            BraveSearchResult(title="Sunbird", url="https://sunbird.io"),
        ])
        verifier = StaticVerifier(accept=["sunbird.io"])

        async with mock_http({"sunbird.io": (200, PAGE)}) as client:
            result = await WebsiteDiscovery(verifier, search=search, http_client=client).discover("Sunbird")

        assert result.state == DiscoveryState.FOUND
        assert result.website == "https://sunbird.io"
        assert result.html == PAGE
        assert result.linkedin_url == LINKEDIN
        assert result.oracle_attempts == 0
        assert result.transitions == [DiscoveryState.PRIMARY_SEARCH, DiscoveryState.FOUND]
        # LinkedIn already known, so no follow-up search
        assert search.search_web.await_count == 1
        query = search.search_web.await_args_list[0].args[0]
        assert query == '"Sunbird" startup company official website'

    @pytest.mark.asyncio
    async def test_investor_query(self):
        search = search_double([], [])
        async with mock_http({}) as client:
            await WebsiteDiscovery(StaticVerifier(), search=search, http_client=client).discover(
                "Acme Ventures", entity_type="investor"
            )
        assert "venture capital fund" in search.search_web.await_args_list[0].args[0]

    @pytest.mark.asyncio
    async def test_search_error_is_soft(self):
        search = MagicMock()
        search.enabled = True
        search.search_web = AsyncMock(side_effect=BraveAPIError("HTTP 401"))

        async with mock_http({}) as client:
            result = await WebsiteDiscovery(StaticVerifier(), search=search, http_client=client).discover("Sunbird")

        assert result.state == DiscoveryState.NOT_FOUND
        assert result.website is None
        assert search.search_web.await_count == 2

    @pytest.mark.asyncio
    async def test_disabled_search_not_called(self):
        search = search_double(enabled=False)
        async with mock_http({}) as client:
            result = await WebsiteDiscovery(StaticVerifier(), search=search, http_client=client).discover("Sunbird")
        assert result.state == DiscoveryState.NOT_FOUND
        search.search_web.assert_not_called()


# =============================================================================
# Oracle phases
# =============================================================================
class TestOraclePhases:

    @pytest.mark.asyncio
    async def test_attempt_cap_and_rejected_domains(self):
        """Both oracle rounds suggest the same domain; it is fetched once and the run stops at two asks."""
        suggester = suggester_double(
            WebsiteSuggestions(website_candidates=["sunbird.com"]),
            WebsiteSuggestions(website_candidates=["https://www.sunbird.com"]),
            WebsiteSuggestions(website_candidates=["sunbird.io"]),
        )
        verifier = StaticVerifier(accept=[])

        async with mock_http({"sunbird.com": (200, PAGE), "sunbird.io": (200, PAGE)}) as client:
            result = await WebsiteDiscovery(
                verifier, suggester=suggester, config=Settings(discovery_max_attempts=2), http_client=client
            ).discover("Sunbird")

        assert result.state == DiscoveryState.NOT_FOUND
        assert result.oracle_attempts == 2
        assert suggester.suggest.await_count == 2
        assert verifier.calls == ["https://sunbird.com"]
        assert len(result.rejections) == 1
        assert result.transitions == [
            DiscoveryState.PRIMARY_SEARCH,
            DiscoveryState.FALLBACK_EXTRACTION,
            DiscoveryState.FEEDBACK_RETRY,
            DiscoveryState.NOT_FOUND,
        ]

        feedback = suggester.suggest.await_args_list[1].args[0]
        assert [m["role"] for m in feedback] == ["user", "assistant", "user"]
        assert feedback[-1]["content"].startswith('NONE of the previous candidates were correct for "Sunbird"')
        assert "- sunbird.com: Different business" in feedback[-1]["content"]

    @pytest.mark.asyncio
    async def test_found_on_feedback_retry(self):
        suggester = suggester_double(
            WebsiteSuggestions(website_candidates=["sunbird.com"]),
            WebsiteSuggestions(website_candidates=["sunbird.io"], linkedin_url=LINKEDIN),
        )

        async with mock_http({"sunbird.com": (200, PAGE), "sunbird.io": (200, PAGE)}) as client:
            result = await WebsiteDiscovery(
                StaticVerifier(accept=["sunbird.io"]), suggester=suggester, http_client=client
            ).discover("Sunbird")

        assert result.state == DiscoveryState.FOUND
        assert result.website == "https://sunbird.io"
        assert result.linkedin_url == LINKEDIN
        assert result.oracle_attempts == 2

    @pytest.mark.asyncio
    async def test_suggestions_are_sanitized(self):
        suggester = suggester_double(
            WebsiteSuggestions(website_candidates=["Not mentioned", "  http://sunbird.io "]),
        )
        verifier = StaticVerifier(accept=["sunbird.io"])

        async with mock_http({"sunbird.io": (200, PAGE)}) as client:
            result = await WebsiteDiscovery(verifier, suggester=suggester, http_client=client).discover("Sunbird")

        assert result.state == DiscoveryState.FOUND
        assert verifier.calls == ["https://sunbird.io"]
        assert result.website == "https://sunbird.io"

    @pytest.mark.asyncio
    async def test_unavailable_oracle_still_counts(self):
        suggester = suggester_double(None, None)
        async with mock_http({}) as client:
            result = await WebsiteDiscovery(StaticVerifier(), suggester=suggester, http_client=client).discover("Sunbird")
        assert result.state == DiscoveryState.NOT_FOUND
        assert result.oracle_attempts == 2

    @pytest.mark.asyncio
    async def test_article_links_mined(self, sample_articles):
        verifier = StaticVerifier(accept=["sunbird.io"])

        async with mock_http({"sunbird.io": (200, PAGE)}) as client:
            result = await WebsiteDiscovery(verifier, http_client=client).discover("Sunbird", articles=sample_articles)

        assert result.state == DiscoveryState.FOUND
        assert result.website == "https://sunbird.io/blog"
        # News domains of the articles themselves are never candidates
        assert verifier.calls == ["https://sunbird.io/blog"]

    @pytest.mark.asyncio
    async def test_investor_first_message(self, sample_articles):
        suggester = suggester_double(None)
        async with mock_http({}) as client:
            await WebsiteDiscovery(
                StaticVerifier(), suggester=suggester, config=Settings(discovery_max_attempts=1), http_client=client
            ).discover("Acme Ventures", articles=sample_articles, entity_type="investor")

        message = suggester.suggest.await_args_list[0].args[0][0]["content"]
        assert message.startswith("Entity: Acme Ventures\nEntity Type: Investment Firm / VC")
        assert "IMPORTANT: This is an INVESTOR" in message
        assert "https://sunbird.io/blog" in message

    @pytest.mark.asyncio
    async def test_linkedin_search_after_terminal_state(self):
        search = search_double([], [BraveSearchResult(title="Sunbird", url=LINKEDIN)])
        async with mock_http({}) as client:
            result = await WebsiteDiscovery(StaticVerifier(), search=search, http_client=client).discover("Sunbird")

        assert result.state == DiscoveryState.NOT_FOUND
        assert result.linkedin_url == LINKEDIN
        last = search.search_web.await_args_list[-1]
        assert last.args[0] == '"Sunbird" linkedin'
        assert last.kwargs["count"] == 3


# =============================================================================
# Helpers
# =============================================================================
class TestDiscoveryHelpers:

    def test_article_context(self, sample_articles):
        context = article_context(sample_articles)
        assert context.startswith("- Sunbird raises $12M Series A led by Acme Ventures: Berlin-based Sunbird")
        assert "<p>" not in context
        assert len(article_context(sample_articles, limit=50)) == 50

    @pytest.mark.asyncio
    async def test_suggester_malformed_answer(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=OracleError("bad json"))
        suggester = LLMWebsiteSuggester(config=Settings(llm_max_retries=0), client=client)

        assert await suggester.suggest([{"role": "user", "content": "Entity: Sunbird"}]) is None
