"""
Tests for the graph store backends.

The in-memory store is exercised directly; the Neo4j store is covered by
query-rendering tests plus one integration test that only runs when
NEO4J_PASSWORD points at a live database.
"""

import os
import uuid

import pytest

from roundgraph.graph.constraints import constraint_statements
from roundgraph.graph.neo4j_store import edge_merge_query, node_merge_query, set_expression
from roundgraph.graph.store import (
    ARTICLE,
    COMPANY,
    FUNDING_ROUND,
    HQ_IN,
    INVESTOR,
    LOCATION,
    PARTICIPATED_IN,
    RAISED,
    SOURCED_FROM,
    EdgeBatch,
    MergeMode,
    NodeBatch,
    check_identifier,
    chunked,
)


# =============================================================================
# In-memory store
# =============================================================================
class TestMergeModes:

    @pytest.mark.asyncio
    async def test_create_then_update(self, graph_store):
        batch = NodeBatch(COMPANY, [{"normalizedName": "sunbird", "name": "Sunbird"}], {"name": MergeMode.COALESCE})
        assert await graph_store.merge_nodes(batch) == 1
        assert await graph_store.merge_nodes(batch) == 0
        assert await graph_store.count_nodes(COMPANY) == 1

    @pytest.mark.asyncio
    async def test_coalesce_and_keep_existing(self, graph_store):
        modes = {"name": MergeMode.COALESCE, "status": MergeMode.KEEP_EXISTING}
        await graph_store.merge_nodes(NodeBatch(
            COMPANY, [{"normalizedName": "sunbird", "name": "Sunbird", "status": "active"}], modes
        ))
        await graph_store.merge_nodes(NodeBatch(
            COMPANY, [{"normalizedName": "sunbird", "name": None, "status": "closed"}], modes
        ))

        node = await graph_store.get_node(COMPANY, "sunbird")
        assert node["name"] == "Sunbird"
        assert node["status"] == "active"

    @pytest.mark.asyncio
    async def test_max(self, graph_store):
        modes = {"amountUsd": MergeMode.MAX}
        for amount in (10e6, 12e6, None, 8e6):
            await graph_store.merge_nodes(NodeBatch(
                FUNDING_ROUND, [{"roundKey": "sunbird::seriesa", "amountUsd": amount}], modes
            ))
        assert (await graph_store.get_node(FUNDING_ROUND, "sunbird::seriesa"))["amountUsd"] == 12e6

    @pytest.mark.asyncio
    async def test_gated(self, graph_store):
        modes = {"country": MergeMode.GATED, "website": MergeMode.GATED}

        async def merge(row):
            await graph_store.merge_nodes(NodeBatch(
                COMPANY, [{"normalizedName": "sunbird", **row}], modes, gate_threshold=0.6
            ))

        await merge({"country": "Germany", "writeConfidence": 0.2})
        await merge({"country": "France", "writeConfidence": 0.5})
        await merge({"country": None, "website": "https://sunbird.io", "writeConfidence": 0.1})
        node = await graph_store.get_node(COMPANY, "sunbird")
        assert node["country"] == "Germany"
        assert node["website"] == "https://sunbird.io"
        assert "writeConfidence" not in node

        await merge({"country": "Austria", "writeConfidence": 0.9})
        assert (await graph_store.get_node(COMPANY, "sunbird"))["country"] == "Austria"

        await graph_store.update_locked_fields(COMPANY, "sunbird", "country", True)
        await merge({"country": "Spain", "writeConfidence": 1.0})
        assert (await graph_store.get_node(COMPANY, "sunbird"))["country"] == "Austria"


class TestEdgesAndLocks:

    async def _seed_round(self, store):
        await store.merge_nodes(NodeBatch(COMPANY, [{"normalizedName": "sunbird"}]))
        await store.merge_nodes(NodeBatch(INVESTOR, [{"normalizedName": "acme"}]))
        await store.merge_nodes(NodeBatch(FUNDING_ROUND, [{"roundKey": "sunbird::seriesa"}]))
        await store.merge_nodes(NodeBatch(ARTICLE, [{"url": "https://a.com/1"}, {"url": "https://b.com/2"}]))
        await store.merge_edges(EdgeBatch(RAISED, COMPANY, FUNDING_ROUND, [{"start": "sunbird", "end": "sunbird::seriesa"}]))
        await store.merge_edges(EdgeBatch(
            PARTICIPATED_IN, INVESTOR, FUNDING_ROUND, [{"start": "acme", "end": "sunbird::seriesa"}]
        ))
        await store.merge_edges(EdgeBatch(SOURCED_FROM, FUNDING_ROUND, ARTICLE, [
            {"start": "sunbird::seriesa", "end": "https://a.com/1"},
            {"start": "sunbird::seriesa", "end": "https://b.com/2"},
        ]))

    @pytest.mark.asyncio
    async def test_edges_need_both_endpoints(self, graph_store):
        await graph_store.merge_nodes(NodeBatch(COMPANY, [{"normalizedName": "sunbird"}]))
        created = await graph_store.merge_edges(EdgeBatch(
            RAISED, COMPANY, FUNDING_ROUND, [{"start": "sunbird", "end": "sunbird::missing"}]
        ))
        assert created == 0
        assert await graph_store.count_edges(RAISED) == 0

    @pytest.mark.asyncio
    async def test_edge_upsert(self, graph_store):
        await self._seed_round(graph_store)
        rows = [{"start": "acme", "end": "sunbird::seriesa", "role": "lead"}]
        batch = EdgeBatch(PARTICIPATED_IN, INVESTOR, FUNDING_ROUND, rows, {"role": MergeMode.OVERWRITE})

        assert await graph_store.merge_edges(batch) == 0
        assert graph_store.edge(PARTICIPATED_IN, INVESTOR, "acme", FUNDING_ROUND, "sunbird::seriesa") == {"role": "lead"}

    @pytest.mark.asyncio
    async def test_source_article_urls(self, graph_store):
        await self._seed_round(graph_store)

        company_urls = await graph_store.source_article_urls(COMPANY, "sunbird", RAISED)
        investor_urls = await graph_store.source_article_urls(INVESTOR, "acme", PARTICIPATED_IN)

        assert sorted(company_urls) == ["https://a.com/1", "https://b.com/2"]
        assert sorted(investor_urls) == sorted(company_urls)
        assert await graph_store.source_article_urls(COMPANY, "ghost", RAISED) == []

    @pytest.mark.asyncio
    async def test_locked_fields_toggle(self, graph_store):
        await graph_store.merge_nodes(NodeBatch(COMPANY, [{"normalizedName": "sunbird"}]))

        assert await graph_store.update_locked_fields(COMPANY, "sunbird", "website", True) == ["website"]
        assert await graph_store.update_locked_fields(COMPANY, "sunbird", "website", True) == ["website"]
        assert await graph_store.update_locked_fields(COMPANY, "sunbird", "country", True) == ["website", "country"]
        assert await graph_store.update_locked_fields(COMPANY, "sunbird", "website", False) == ["country"]
        assert await graph_store.update_locked_fields(COMPANY, "ghost", "website", True) is None

    @pytest.mark.asyncio
    async def test_set_properties(self, graph_store):
        await graph_store.merge_nodes(NodeBatch(COMPANY, [{"normalizedName": "sunbird"}]))

        assert await graph_store.set_properties(COMPANY, "sunbird", {"website": "https://sunbird.io"})
        assert await graph_store.set_properties(COMPANY, "sunbird", {"website": None})
        assert "website" not in await graph_store.get_node(COMPANY, "sunbird")
        assert not await graph_store.set_properties(COMPANY, "ghost", {"website": "x"})

    @pytest.mark.asyncio
    async def test_get_node_returns_copy(self, graph_store):
        await graph_store.merge_nodes(NodeBatch(COMPANY, [{"normalizedName": "sunbird"}]))
        node = await graph_store.get_node(COMPANY, "sunbird")
        node["website"] = "mutated"
        assert "website" not in await graph_store.get_node(COMPANY, "sunbird")


class TestHelpers:

    def test_check_identifier(self):
        assert check_identifier("foundedYear") == "foundedYear"
        with pytest.raises(ValueError):
            check_identifier("name} DETACH DELETE n //")

    @pytest.mark.asyncio
    async def test_locked_properties_ignore_every_mode(self, graph_store):
        modes = {"name": MergeMode.COALESCE, "status": MergeMode.KEEP_EXISTING, "tagline": MergeMode.OVERWRITE}
        await graph_store.merge_nodes(NodeBatch(
            COMPANY, [{"normalizedName": "sunbird", "name": "Sunbird", "tagline": "Solar"}], modes
        ))
        for prop in ("name", "status", "tagline"):
            await graph_store.update_locked_fields(COMPANY, "sunbird", prop, True)

        await graph_store.merge_nodes(NodeBatch(
            COMPANY, [{"normalizedName": "sunbird", "name": "SUNBIRD Ltd", "status": "closed", "tagline": None}], modes
        ))

        node = await graph_store.get_node(COMPANY, "sunbird")
        assert node["name"] == "Sunbird"
        assert node["tagline"] == "Solar"
        assert "status" not in node

    @pytest.mark.asyncio
    async def test_edge_start_guard(self, graph_store):
        await graph_store.merge_nodes(NodeBatch(
            COMPANY, [{"normalizedName": "sunbird", "country": "Germany"}], {"country": MergeMode.OVERWRITE}
        ))
        await graph_store.merge_nodes(NodeBatch(
            LOCATION, [{"name": "Germany"}, {"name": "Austria"}], {}
        ))

        created = await graph_store.merge_edges(EdgeBatch(
            HQ_IN, COMPANY, LOCATION,
            [{"start": "sunbird", "end": "Germany"}, {"start": "sunbird", "end": "Austria"}],
            start_matches_end="country",
        ))

        assert created == 1
        assert graph_store.edge(HQ_IN, COMPANY, "sunbird", LOCATION, "Austria") is None

    def test_chunked(self):
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunked([1, 2], 0) == [[1], [2]]


# =============================================================================
# Neo4j query rendering
# =============================================================================
class TestCypher:

    def test_node_merge_query(self):
        query = node_merge_query(NodeBatch(
            COMPANY, [], {"name": MergeMode.COALESCE, "status": MergeMode.KEEP_EXISTING}
        ))
        assert query.startswith("UNWIND $rows AS row\nMERGE (n:Company {normalizedName: row.normalizedName})")
        assert (
            "n.name = CASE WHEN 'name' IN coalesce(n.lockedFields, []) THEN n.name "
            "ELSE coalesce(row.name, n.name) END"
        ) in query
        assert "ELSE coalesce(n.status, row.status) END" in query

    def test_edge_properties_have_no_lock_guard(self):
        query = edge_merge_query(EdgeBatch(PARTICIPATED_IN, INVESTOR, FUNDING_ROUND, [], {"role": MergeMode.OVERWRITE}))
        assert query.endswith("SET r.role = row.role")

    def test_edge_start_guard(self):
        query = edge_merge_query(EdgeBatch(HQ_IN, COMPANY, LOCATION, [], start_matches_end="country"))
        assert "MATCH (a:Company {normalizedName: row.start}) WHERE a.country = row.end\n" in query

    def test_edge_merge_query(self):
        query = edge_merge_query(EdgeBatch(RAISED, COMPANY, FUNDING_ROUND, []))
        assert "MATCH (a:Company {normalizedName: row.start})" in query
        assert "MATCH (b:FundingRound {roundKey: row.end})" in query
        assert query.endswith("MERGE (a)-[r:RAISED]->(b)")

    def test_gated_expression(self):
        expr = set_expression("n", "country", MergeMode.GATED)
        assert "'country' IN coalesce(n.lockedFields, [])" in expr
        assert "row.writeConfidence > $threshold" in expr

    def test_max_expression(self):
        expr = set_expression("n", "amountUsd", MergeMode.MAX)
        assert expr.startswith("n.amountUsd = CASE WHEN n.amountUsd IS NULL")

    def test_invalid_property_rejected(self):
        with pytest.raises(ValueError):
            set_expression("n", "bad-name", MergeMode.OVERWRITE)

    def test_constraints_cover_every_label(self):
        statements = constraint_statements()
        assert len(statements) == 5
        assert (
            "CREATE CONSTRAINT funding_round_key IF NOT EXISTS "
            "FOR (f:FundingRound) REQUIRE f.roundKey IS UNIQUE"
        ) in statements


# =============================================================================
# Neo4j integration (skipped without a database)
# =============================================================================
@pytest.mark.skipif(not os.environ.get("NEO4J_PASSWORD"), reason="NEO4J_PASSWORD not set")
class TestNeo4jIntegration:

    @pytest.mark.asyncio
    async def test_roundtrip(self):
        from roundgraph.config.settings import Settings
        from roundgraph.graph.connection import create_graph_store

        store = create_graph_store(Settings(graph_backend="neo4j"))
        key = f"roundgraph-test-{uuid.uuid4().hex[:8]}"
        try:
            await store.ensure_constraints()
            await store.merge_nodes(NodeBatch(
                COMPANY, [{"normalizedName": key, "country": "Germany", "writeConfidence": 0.2}],
                {"country": MergeMode.GATED},
            ))
            await store.update_locked_fields(COMPANY, key, "country", True)
            await store.merge_nodes(NodeBatch(
                COMPANY, [{"normalizedName": key, "country": "France", "writeConfidence": 1.0}],
                {"country": MergeMode.GATED},
            ))
            node = await store.get_node(COMPANY, key)
            assert node["country"] == "Germany"
            assert node["lockedFields"] == ["country"]
        finally:
            await store._run(f"MATCH (n:Company {{normalizedName: $key}}) DETACH DELETE n", key=key)
            await store.close()
