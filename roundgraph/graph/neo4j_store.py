"""
Neo4j-backed graph store.

Every write is UNWIND + MERGE on a constrained key; property handling is
generated from MergeMode so coalesce-preserve and max-wins rules live in
one place. Driver/database failures surface as GraphStoreError.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from neo4j.exceptions import DriverError, Neo4jError

from . import constraints
from .store import (
    ARTICLE,
    FUNDING_ROUND,
    LOCKED_FIELDS,
    NODE_KEYS,
    SOURCED_FROM,
    WRITE_CONFIDENCE,
    EdgeBatch,
    GraphStore,
    GraphStoreError,
    MergeMode,
    NodeBatch,
    check_identifier,
)

logger = logging.getLogger(__name__)


def _value_expression(var: str, prop: str, mode: MergeMode) -> str:
    current, incoming = f"{var}.{prop}", f"row.{prop}"
    if mode == MergeMode.OVERWRITE:
        return incoming
    if mode == MergeMode.COALESCE:
        return f"coalesce({incoming}, {current})"
    if mode == MergeMode.KEEP_EXISTING:
        return f"coalesce({current}, {incoming})"
    if mode == MergeMode.MAX:
        return (
            f"CASE WHEN {current} IS NULL OR "
            f"({incoming} IS NOT NULL AND {incoming} > {current}) "
            f"THEN {incoming} ELSE {current} END"
        )
    if mode == MergeMode.GATED:
        return (
            f"CASE WHEN {incoming} IS NULL OR '{prop}' IN coalesce({var}.{LOCKED_FIELDS}, []) THEN {current} "
            f"WHEN {current} IS NULL OR {current} = '' OR {current} = [] "
            f"OR row.{WRITE_CONFIDENCE} > $threshold THEN {incoming} ELSE {current} END"
        )
    raise ValueError(f"Unknown merge mode: {mode}")


def set_expression(var: str, prop: str, mode: MergeMode, lockable: bool = False) -> str:
    """
    Cypher SET item for one property; incoming values are read from `row`.

    With lockable=True (node writes) a property listed in lockedFields keeps
    its current value whatever the mode.
    """
    check_identifier(prop)
    current = f"{var}.{prop}"
    value = _value_expression(var, prop, mode)
    if lockable and mode != MergeMode.GATED:
        value = f"CASE WHEN '{prop}' IN coalesce({var}.{LOCKED_FIELDS}, []) THEN {current} ELSE {value} END"
    return f"{current} = {value}"


def _set_clause(var: str, modes: Mapping[str, MergeMode], lockable: bool = False) -> str:
    if not modes:
        return ""
    return "SET " + ", ".join(set_expression(var, prop, mode, lockable) for prop, mode in modes.items())


def node_merge_query(batch: NodeBatch) -> str:
    label, key = check_identifier(batch.label), check_identifier(batch.key)
    return (
        f"UNWIND $rows AS row\n"
        f"MERGE (n:{label} {{{key}: row.{key}}})\n"
        f"{_set_clause('n', batch.modes, lockable=True)}"
    ).strip()


def edge_merge_query(batch: EdgeBatch) -> str:
    rel = check_identifier(batch.rel_type)
    start_label, end_label = check_identifier(batch.start_label), check_identifier(batch.end_label)
    start_key, end_key = NODE_KEYS[start_label], NODE_KEYS[end_label]
    guard = ""
    if batch.start_matches_end:
        guard = f" WHERE a.{check_identifier(batch.start_matches_end)} = row.end"
    return (
        f"UNWIND $rows AS row\n"
        f"MATCH (a:{start_label} {{{start_key}: row.start}}){guard}\n"
        f"MATCH (b:{end_label} {{{end_key}: row.end}})\n"
        f"MERGE (a)-[r:{rel}]->(b)\n"
        f"{_set_clause('r', batch.modes)}"
    ).strip()


class Neo4jGraphStore(GraphStore):
    """
    Graph store over an async Neo4j driver.

    Args:
        driver: neo4j AsyncDriver (owned; closed by close())
        database: Neo4j database name
    """

    def __init__(self, driver, database: Optional[str] = None):
        self.driver = driver
        self.database = database

    async def _run(self, query: str, **params) -> Tuple[List[Dict[str, Any]], Any]:
        try:
            async with self.driver.session(database=self.database) as session:
                result = await session.run(query, params)
                records = await result.data()
                summary = await result.consume()
                return records, summary
        except (Neo4jError, DriverError) as e:
            logger.error(f"Neo4j query failed: {type(e).__name__}: {e}", exc_info=True)
            raise GraphStoreError(f"Graph store error: {e}") from e

    async def ensure_constraints(self) -> None:
        try:
            await constraints.ensure_constraints(self.driver, database=self.database)
        except (Neo4jError, DriverError) as e:
            raise GraphStoreError(f"Could not ensure constraints: {e}") from e

    async def merge_nodes(self, batch: NodeBatch) -> int:
        if not batch.rows:
            return 0
        _, summary = await self._run(
            node_merge_query(batch), rows=batch.rows, threshold=batch.gate_threshold
        )
        return summary.counters.nodes_created

    async def merge_edges(self, batch: EdgeBatch) -> int:
        if not batch.rows:
            return 0
        _, summary = await self._run(edge_merge_query(batch), rows=batch.rows)
        return summary.counters.relationships_created

    async def get_node(self, label: str, key_value: str) -> Optional[Dict[str, Any]]:
        label = check_identifier(label)
        key = NODE_KEYS[label]
        records, _ = await self._run(
            f"MATCH (n:{label} {{{key}: $value}}) RETURN properties(n) AS props",
            value=key_value,
        )
        return records[0]["props"] if records else None

    async def set_properties(self, label: str, key_value: str, props: Mapping[str, Any]) -> bool:
        label = check_identifier(label)
        for prop in props:
            check_identifier(prop)
        key = NODE_KEYS[label]
        records, _ = await self._run(
            f"MATCH (n:{label} {{{key}: $value}}) SET n += $props RETURN count(n) AS matched",
            value=key_value,
            props=dict(props),
        )
        return bool(records and records[0]["matched"])

    async def update_locked_fields(
        self, label: str, key_value: str, field_name: str, locked: bool
    ) -> Optional[List[str]]:
        label = check_identifier(label)
        key = NODE_KEYS[label]
        records, _ = await self._run(
            f"MATCH (n:{label} {{{key}: $value}})\n"
            f"WITH n, [f IN coalesce(n.{LOCKED_FIELDS}, []) WHERE f <> $field] AS others\n"
            f"SET n.{LOCKED_FIELDS} = CASE WHEN $locked THEN others + $field ELSE others END\n"
            f"RETURN n.{LOCKED_FIELDS} AS fields",
            value=key_value,
            field=field_name,
            locked=locked,
        )
        return list(records[0]["fields"]) if records else None

    async def source_article_urls(self, label: str, key_value: str, rel_type: str) -> List[str]:
        label, rel_type = check_identifier(label), check_identifier(rel_type)
        key = NODE_KEYS[label]
        records, _ = await self._run(
            f"MATCH (n:{label} {{{key}: $value}})-[:{rel_type}]->(:{FUNDING_ROUND})"
            f"-[:{SOURCED_FROM}]->(a:{ARTICLE})\n"
            f"RETURN DISTINCT a.url AS url",
            value=key_value,
        )
        return [r["url"] for r in records]

    async def count_nodes(self, label: str) -> int:
        label = check_identifier(label)
        records, _ = await self._run(f"MATCH (n:{label}) RETURN count(n) AS c")
        return records[0]["c"] if records else 0

    async def count_edges(self, rel_type: str) -> int:
        rel_type = check_identifier(rel_type)
        records, _ = await self._run(f"MATCH ()-[r:{rel_type}]->() RETURN count(r) AS c")
        return records[0]["c"] if records else 0

    async def close(self) -> None:
        await self.driver.close()
