"""
Tests for company and investor enrichment.

The graph is seeded through the synchronizer, discovery and the field
extractors are AsyncMock doubles, and stored websites are fetched through
a mock transport.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import StaticVerifier, mock_http
from roundgraph.analyst.oracle import OracleError
from roundgraph.analyst.schemas import CompanyMeta
from roundgraph.enrichment.company import CompanyEnricher
from roundgraph.enrichment.discovery import DiscoveryResult, DiscoveryState
from roundgraph.enrichment.investor import InvestorEnricher
from roundgraph.enrichment.pipeline import EntityNotFoundError
from roundgraph.enrichment.trust import CompanyFields, InvestorArticleFields, InvestorWebsiteFields
from roundgraph.graph.store import ARTICLE, COMPANY, HQ_IN, INVESTOR, LOCATION
from roundgraph.graph.synchronizer import GraphSynchronizer, RoundSyncInput, SyncArticle

PAGE = (
    "<html><head><title>Sunbird</title></head><body><p>"
    "Sunbird plans, stores and delivers photovoltaic hardware for installers across Europe."
    "</p></body></html>"
)
LINKEDIN = "https://www.linkedin.com/company/sunbird-solar"


async def seed(graph_store, sample_articles=(), company="Sunbird", meta=None):
    await GraphSynchronizer(graph_store).sync_round(RoundSyncInput(
        company_name=company,
        amount_usd=12_000_000,
        stage="Series A",
        investors=["Acme Ventures", "Northwind Capital"],
        lead_investor="Acme Ventures",
        country="Germany",
        confidence=0.9,
        company_meta=meta,
        articles=[SyncArticle(id=a.id, url=a.url, title=a.title) for a in sample_articles],
    ))


def discovery_double(result=None):
    discovery = MagicMock()
    discovery.discover = AsyncMock(return_value=result or DiscoveryResult())
    return discovery


def company_extractor(result):
    extractor = MagicMock()
    if isinstance(result, Exception):
        extractor.extract = AsyncMock(side_effect=result)
    else:
        extractor.extract = AsyncMock(return_value=result)
    return extractor


def sunbird_fields(**overrides):
    data = dict(
        description="Solar logistics for installers",
        founded_year=2019,
        employee_range="11-50",
        country="Austria",
        location="Berlin",
        field_confidence={
            "description": 0.9,
            "founded_year": 0.8,
            "employee_range": 0.7,
            "country": 0.5,
            "location": 0.8,
        },
    )
    data.update(overrides)
    return CompanyFields(**data)


# =============================================================================
# Company enrichment
# =============================================================================
class TestCompanyEnrichment:

    @pytest.mark.asyncio
    async def test_discovered_website_and_extracted_fields(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles)
        discovery = discovery_double(DiscoveryResult(
            website="https://sunbird.io", linkedin_url=LINKEDIN, html=PAGE, state=DiscoveryState.FOUND,
        ))
        extractor = company_extractor(sunbird_fields())
        enricher = CompanyEnricher(
            graph_store, StaticVerifier(), discovery, article_store=article_store, extractor=extractor
        )

        report = await enricher.enrich("Sunbird")

        assert report.website == "https://sunbird.io"
        assert report.fields_updated == [
            "description", "employeeRange", "foundedYear", "linkedinUrl", "website", "location",
        ]
        node = await graph_store.get_node(COMPANY, "sunbird")
        assert node["website"] == "https://sunbird.io"
        assert node["linkedinUrl"] == LINKEDIN
        assert node["foundedYear"] == 2019
        # 0.5 does not beat the country written at sync time
        assert node["country"] == "Germany"
        assert "enrichedAt" in node

        assert graph_store.edge(HQ_IN, COMPANY, "sunbird", LOCATION, "Berlin") is not None
        assert (await graph_store.get_node(LOCATION, "Berlin"))["type"] == "city"

        article = await graph_store.get_node(ARTICLE, sample_articles[0].url)
        assert article["content"].startswith("Berlin-based Sunbird has raised $12M")

        discovery.discover.assert_awaited_once()
        assert discovery.discover.await_args.kwargs["entity_type"] == "company"
        name, texts, website_text = extractor.extract.await_args.args
        assert name == "Sunbird"
        assert len(texts) == 2
        assert website_text.startswith("Page content: Sunbird plans")
        assert [s.stage for s in report.stages] == ["articles", "website", "llm", "save"]

    @pytest.mark.asyncio
    async def test_stored_website_verified(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles, meta=CompanyMeta(website="https://sunbird.io"))
        discovery = discovery_double()
        extractor = company_extractor(None)

        async with mock_http({"sunbird.io": (200, PAGE)}) as client:
            enricher = CompanyEnricher(
                graph_store, StaticVerifier(accept=["sunbird.io"]), discovery,
                article_store=article_store, http_client=client, extractor=extractor,
            )
            report = await enricher.enrich("Sunbird")

        discovery.discover.assert_not_called()
        assert report.website == "https://sunbird.io"
        assert extractor.extract.await_args.args[2].startswith("Page content:")

    @pytest.mark.asyncio
    async def test_stale_website_cleared(self, graph_store, article_store, sample_articles):
        meta = CompanyMeta(website="https://wrong.io", linkedin_url="https://www.linkedin.com/company/wrong-co")
        await seed(graph_store, sample_articles, meta=meta)
        verifier = StaticVerifier(accept=[])

        async with mock_http({"wrong.io": (200, PAGE)}) as client:
            enricher = CompanyEnricher(
                graph_store, verifier, discovery_double(),
                article_store=article_store, http_client=client, extractor=company_extractor(None),
            )
            report = await enricher.enrich("Sunbird")

        node = await graph_store.get_node(COMPANY, "sunbird")
        assert "website" not in node
        assert "linkedinUrl" not in node
        assert verifier.calls == ["https://wrong.io"]
        assert report.fields_updated == []
        assert any("doesn't match" in s.message for s in report.stages)

    @pytest.mark.asyncio
    async def test_locked_website_survives(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles, meta=CompanyMeta(website="https://wrong.io"))
        await GraphSynchronizer(graph_store).set_locked_field("company", "Sunbird", "website", True)
        discovery = discovery_double(DiscoveryResult(website="https://sunbird.io", html=PAGE, state=DiscoveryState.FOUND))

        async with mock_http({"wrong.io": (200, PAGE)}) as client:
            enricher = CompanyEnricher(
                graph_store, StaticVerifier(accept=[]), discovery,
                article_store=article_store, http_client=client, extractor=company_extractor(None),
            )
            report = await enricher.enrich("Sunbird")

        assert (await graph_store.get_node(COMPANY, "sunbird"))["website"] == "https://wrong.io"
        assert "website" not in report.fields_updated

    @pytest.mark.asyncio
    async def test_unreachable_website_rediscovered_without_clearing(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles, meta=CompanyMeta(website="https://sunbird.io"))
        discovery = discovery_double()

        async with mock_http({}) as client:
            enricher = CompanyEnricher(
                graph_store, StaticVerifier(), discovery,
                article_store=article_store, http_client=client, extractor=company_extractor(None),
            )
            await enricher.enrich("Sunbird")

        discovery.discover.assert_awaited_once()
        assert (await graph_store.get_node(COMPANY, "sunbird"))["website"] == "https://sunbird.io"

    @pytest.mark.asyncio
    async def test_oracle_error_writes_nothing(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles, meta=CompanyMeta(website="https://wrong.io"))
        before = graph_store.snapshot()

        async with mock_http({"wrong.io": (200, PAGE)}) as client:
            enricher = CompanyEnricher(
                graph_store, StaticVerifier(accept=[]), discovery_double(),
                article_store=article_store, http_client=client,
                extractor=company_extractor(OracleError("malformed")),
            )
            with pytest.raises(OracleError):
                await enricher.enrich("Sunbird")

        assert graph_store.snapshot() == before

    @pytest.mark.asyncio
    async def test_weak_or_locked_location_not_linked(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles)
        extractor = company_extractor(sunbird_fields(field_confidence={"location": 0.3}))
        enricher = CompanyEnricher(
            graph_store, StaticVerifier(), discovery_double(), article_store=article_store, extractor=extractor
        )

        await enricher.enrich("Sunbird")
        assert await graph_store.get_node(LOCATION, "Berlin") is None

        await GraphSynchronizer(graph_store).set_locked_field("company", "Sunbird", "location", True)
        extractor.extract.return_value = sunbird_fields()
        report = await enricher.enrich("Sunbird")

        assert await graph_store.get_node(LOCATION, "Berlin") is None
        assert "location" not in report.fields_updated

    @pytest.mark.asyncio
    async def test_existing_location_keeps_its_type(self, graph_store, article_store, sample_articles):
        # "Germany" already exists as the country Location from sync
        await seed(graph_store, sample_articles)
        extractor = company_extractor(sunbird_fields(location="Germany"))
        enricher = CompanyEnricher(
            graph_store, StaticVerifier(), discovery_double(), article_store=article_store, extractor=extractor
        )

        report = await enricher.enrich("Sunbird")

        assert "location" in report.fields_updated
        assert (await graph_store.get_node(LOCATION, "Germany"))["type"] == "country"
        assert graph_store.edge(HQ_IN, COMPANY, "sunbird", LOCATION, "Germany") is not None

    @pytest.mark.asyncio
    async def test_name_search_when_no_linked_articles(self, graph_store, article_store):
        await seed(graph_store)
        extractor = company_extractor(None)
        enricher = CompanyEnricher(
            graph_store, StaticVerifier(), discovery_double(), article_store=article_store, extractor=extractor
        )

        await enricher.enrich("Sunbird")

        assert len(extractor.extract.await_args.args[1]) == 2

    @pytest.mark.asyncio
    async def test_no_sources(self, graph_store, article_store):
        await seed(graph_store, company="Moonfish")
        extractor = company_extractor(sunbird_fields())
        enricher = CompanyEnricher(
            graph_store, StaticVerifier(), discovery_double(), article_store=article_store, extractor=extractor
        )

        report = await enricher.enrich("Moonfish")

        assert report.stages[-1].stage == "error"
        assert report.stages[-1].message == "No sources available for enrichment"
        extractor.extract.assert_not_called()
        assert "enrichedAt" not in await graph_store.get_node(COMPANY, "moonfish")

    @pytest.mark.asyncio
    async def test_missing_and_empty_names(self, graph_store):
        enricher = CompanyEnricher(
            graph_store, StaticVerifier(), discovery_double(), extractor=company_extractor(None)
        )
        with pytest.raises(EntityNotFoundError):
            await enricher.enrich("Ghost")
        with pytest.raises(ValueError):
            await enricher.enrich("  ")


# =============================================================================
# Investor enrichment
# =============================================================================
def investor_extractor(website_fields=None, article_fields=None):
    extractor = MagicMock()
    extractor.extract_from_website = AsyncMock(return_value=website_fields)
    extractor.extract_from_articles = AsyncMock(return_value=article_fields)
    return extractor


class TestInvestorEnrichment:

    @pytest.mark.asyncio
    async def test_website_outranks_articles(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles)
        discovery = discovery_double(DiscoveryResult(website="https://acme.vc", html=PAGE, state=DiscoveryState.FOUND))
        extractor = investor_extractor(
            InvestorWebsiteFields(type="vc", aum=500_000_000, field_confidence={"type": 0.4, "aum": 0.9}),
            InvestorArticleFields(
                type="cvc", stage_focus=["Series A"], field_confidence={"type": 0.95, "stage_focus": 0.9}
            ),
        )
        enricher = InvestorEnricher(
            graph_store, StaticVerifier(), discovery, article_store=article_store, extractor=extractor
        )

        report = await enricher.enrich("Acme Ventures")

        assert report.fields_updated == ["aum", "stageFocus", "type", "website"]
        node = await graph_store.get_node(INVESTOR, "acme")
        assert node["type"] == "vc"
        assert node["aum"] == 500_000_000
        assert node["stageFocus"] == ["Series A"]
        assert node["website"] == "https://acme.vc"
        assert discovery.discover.await_args.kwargs["entity_type"] == "investor"
        assert len(extractor.extract_from_articles.await_args.args[1]) == 2

    @pytest.mark.asyncio
    async def test_articles_only(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles)
        extractor = investor_extractor(
            article_fields=InvestorArticleFields(sector_focus=["Climate"], field_confidence={"sector_focus": 0.9}),
        )
        enricher = InvestorEnricher(
            graph_store, StaticVerifier(), discovery_double(), article_store=article_store, extractor=extractor
        )

        report = await enricher.enrich("Acme")

        extractor.extract_from_website.assert_not_called()
        assert report.fields_updated == ["sectorFocus"]
        assert (await graph_store.get_node(INVESTOR, "acme"))["sectorFocus"] == ["Climate"]

    @pytest.mark.asyncio
    async def test_stored_website_checked_as_investor(self, graph_store, article_store, sample_articles):
        await seed(graph_store, sample_articles)
        await graph_store.set_properties(INVESTOR, "acme", {"website": "https://acme.vc"})
        verifier = MagicMock()
        verifier.verify = AsyncMock(return_value=MagicMock(match=True))

        async with mock_http({"acme.vc": (200, PAGE)}) as client:
            enricher = InvestorEnricher(
                graph_store, verifier, discovery_double(),
                article_store=article_store, http_client=client, extractor=investor_extractor(),
            )
            await enricher.enrich("Acme Ventures")

        args, kwargs = verifier.verify.await_args
        assert args[3] == '"Acme Ventures" is an investment firm / VC / fund / angel investor.'
        assert kwargs["entity_type"] == "investor"
