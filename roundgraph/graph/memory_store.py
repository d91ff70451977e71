"""
In-process graph store.

Same MERGE semantics as the Neo4j store, held in dicts. Used with
GRAPH_BACKEND=memory for local runs and by the test suite.
"""

import asyncio
import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .store import (
    FUNDING_ROUND,
    LOCKED_FIELDS,
    NODE_KEYS,
    SOURCED_FROM,
    WRITE_CONFIDENCE,
    EdgeBatch,
    GraphStore,
    MergeMode,
    NodeBatch,
    check_identifier,
)
from .write_policy import is_empty

logger = logging.getLogger(__name__)

EdgeKey = Tuple[str, str, str, str, str]  # (rel_type, start_label, start_key, end_label, end_key)


def apply_mode(mode: MergeMode, current: Any, incoming: Any) -> Any:
    """Resolve one property under a merge mode."""
    if mode == MergeMode.OVERWRITE:
        return incoming
    if mode == MergeMode.COALESCE:
        return incoming if incoming is not None else current
    if mode == MergeMode.KEEP_EXISTING:
        return current if current is not None else incoming
    if mode == MergeMode.MAX:
        if current is None:
            return incoming
        if incoming is None:
            return current
        return incoming if incoming > current else current
    raise ValueError(f"Unsupported merge mode here: {mode}")


def apply_gated(node: Dict[str, Any], prop: str, incoming: Any, confidence: float, threshold: float) -> None:
    """GATED write of one node property, in place."""
    if incoming is None or prop in (node.get(LOCKED_FIELDS) or []):
        return
    if is_empty(node.get(prop)) or confidence > threshold:
        node[prop] = incoming


class InMemoryGraphStore(GraphStore):
    """Dict-backed graph store with upsert-by-key semantics."""

    def __init__(self):
        self.nodes: Dict[str, Dict[str, Dict[str, Any]]] = {label: {} for label in NODE_KEYS}
        self.edges: Dict[EdgeKey, Dict[str, Any]] = {}
        self.constraints_ensured = False
        self._lock = asyncio.Lock()

    async def ensure_constraints(self) -> None:
        # Uniqueness holds by construction: nodes are stored by key
        self.constraints_ensured = True

    async def merge_nodes(self, batch: NodeBatch) -> int:
        check_identifier(batch.label)
        key = batch.key
        created = 0
        async with self._lock:
            table = self.nodes.setdefault(batch.label, {})
            for row in batch.rows:
                key_value = row[key]
                node = table.get(key_value)
                if node is None:
                    node = {key: key_value}
                    table[key_value] = node
                    created += 1
                locked = node.get(LOCKED_FIELDS) or []
                for prop, mode in batch.modes.items():
                    if mode == MergeMode.GATED:
                        apply_gated(node, prop, row.get(prop), row.get(WRITE_CONFIDENCE) or 0.0, batch.gate_threshold)
                        continue
                    if prop in locked:
                        continue
                    value = apply_mode(mode, node.get(prop), row.get(prop))
                    if value is None:
                        node.pop(prop, None)
                    else:
                        node[prop] = value
        return created

    async def merge_edges(self, batch: EdgeBatch) -> int:
        check_identifier(batch.rel_type)
        created = 0
        async with self._lock:
            starts = self.nodes.get(batch.start_label, {})
            ends = self.nodes.get(batch.end_label, {})
            for row in batch.rows:
                if row["start"] not in starts or row["end"] not in ends:
                    continue
                guard = batch.start_matches_end
                if guard and starts[row["start"]].get(guard) != row["end"]:
                    continue
                edge_key = (batch.rel_type, batch.start_label, row["start"], batch.end_label, row["end"])
                props = self.edges.get(edge_key)
                if props is None:
                    props = {}
                    self.edges[edge_key] = props
                    created += 1
                for prop, mode in batch.modes.items():
                    value = apply_mode(mode, props.get(prop), row.get(prop))
                    if value is None:
                        props.pop(prop, None)
                    else:
                        props[prop] = value
        return created

    async def get_node(self, label: str, key_value: str) -> Optional[Dict[str, Any]]:
        node = self.nodes.get(label, {}).get(key_value)
        return copy.deepcopy(node) if node is not None else None

    async def set_properties(self, label: str, key_value: str, props: Mapping[str, Any]) -> bool:
        async with self._lock:
            node = self.nodes.get(label, {}).get(key_value)
            if node is None:
                return False
            for prop, value in props.items():
                check_identifier(prop)
                if value is None:
                    node.pop(prop, None)
                else:
                    node[prop] = copy.deepcopy(value)
            return True

    async def update_locked_fields(
        self, label: str, key_value: str, field_name: str, locked: bool
    ) -> Optional[List[str]]:
        async with self._lock:
            node = self.nodes.get(label, {}).get(key_value)
            if node is None:
                return None
            fields = [f for f in node.get(LOCKED_FIELDS) or [] if f != field_name]
            if locked:
                fields.append(field_name)
            node[LOCKED_FIELDS] = fields
            return list(fields)

    async def source_article_urls(self, label: str, key_value: str, rel_type: str) -> List[str]:
        rounds = [
            k[4] for k in self.edges
            if k[0] == rel_type and k[1] == label and k[2] == key_value and k[3] == FUNDING_ROUND
        ]
        urls: List[str] = []
        for round_key in rounds:
            for k in self.edges:
                if k[0] == SOURCED_FROM and k[1] == FUNDING_ROUND and k[2] == round_key and k[4] not in urls:
                    urls.append(k[4])
        return urls

    async def count_nodes(self, label: str) -> int:
        return len(self.nodes.get(label, {}))

    async def count_edges(self, rel_type: str) -> int:
        return sum(1 for k in self.edges if k[0] == rel_type)

    def edge(self, rel_type: str, start_label: str, start: str, end_label: str, end: str) -> Optional[Dict[str, Any]]:
        """Properties of one relationship (test/debug helper)."""
        return self.edges.get((rel_type, start_label, start, end_label, end))

    def snapshot(self) -> Tuple[Dict, Dict]:
        """Deep copy of all nodes and edges, for state comparisons."""
        return copy.deepcopy(self.nodes), copy.deepcopy(self.edges)
