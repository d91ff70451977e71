"""
Graph store contract.

Key-based MERGE / MATCH / SET over the node and edge schema. Every write is
an upsert by a unique key, so any operation is safe to retry and re-running
a sync converges to the same state.

Per-property merge behaviour is explicit (MergeMode) instead of being
baked into each query:

    OVERWRITE      n.p = incoming
    COALESCE       n.p = incoming if incoming is not null else n.p
    KEEP_EXISTING  n.p = n.p if n.p is not null else incoming
    MAX            n.p = larger non-null of (n.p, incoming)
    GATED          n.p = incoming only if p is not in n.lockedFields, incoming
                   is not null, and (n.p is empty OR row.writeConfidence >
                   batch.gate_threshold)

GATED keeps the confidence-gated write policy inside the MERGE itself, so
bulk writes never overwrite locked or better-supported values. On node
writes every other mode also leaves a property in n.lockedFields untouched.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..common.errors import RoundgraphError

# Node labels
COMPANY = "Company"
INVESTOR = "InvestorOrg"
FUNDING_ROUND = "FundingRound"
ARTICLE = "Article"
LOCATION = "Location"

# Relationship types
RAISED = "RAISED"
PARTICIPATED_IN = "PARTICIPATED_IN"
SOURCED_FROM = "SOURCED_FROM"
HQ_IN = "HQ_IN"

# Unique key property per label
NODE_KEYS = {
    COMPANY: "normalizedName",
    INVESTOR: "normalizedName",
    FUNDING_ROUND: "roundKey",
    ARTICLE: "url",
    LOCATION: "name",
}

LOCKED_FIELDS = "lockedFields"

# Row key carrying the confidence used by GATED properties (never stored)
WRITE_CONFIDENCE = "writeConfidence"

DEFAULT_GATE_THRESHOLD = 0.6

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class GraphStoreError(RoundgraphError):
    """Graph store unreachable or rejected a write."""
    pass


class MergeMode(str, Enum):
    OVERWRITE = "overwrite"
    COALESCE = "coalesce"
    KEEP_EXISTING = "keep_existing"
    MAX = "max"
    GATED = "gated"


def check_identifier(name: str) -> str:
    """Labels, relationship types and property names are interpolated into queries."""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid graph identifier: {name!r}")
    return name


@dataclass
class NodeBatch:
    """
    Rows to MERGE on one label.

    Each row carries the label's key property plus any properties named in
    `modes`. Properties missing from a row are treated as null.
    """
    label: str
    rows: List[Dict[str, Any]]
    modes: Dict[str, MergeMode] = field(default_factory=dict)
    gate_threshold: float = DEFAULT_GATE_THRESHOLD

    @property
    def key(self) -> str:
        return NODE_KEYS[self.label]


@dataclass
class EdgeBatch:
    """
    Rows to MERGE as (start)-[rel_type]->(end), one edge per node pair.

    Each row: {"start": <start key value>, "end": <end key value>, **props}.
    Rows whose endpoints do not exist are skipped (MATCH semantics). With
    start_matches_end set, a row is also skipped unless that property of the
    start node equals the end key (Company.country for HQ_IN).
    """
    rel_type: str
    start_label: str
    end_label: str
    rows: List[Dict[str, Any]]
    modes: Dict[str, MergeMode] = field(default_factory=dict)
    start_matches_end: Optional[str] = None


class GraphStore(ABC):
    """Abstract key-based graph store."""

    @abstractmethod
    async def ensure_constraints(self) -> None:
        """Create unique-key constraints if missing (idempotent)."""

    @abstractmethod
    async def merge_nodes(self, batch: NodeBatch) -> int:
        """Upsert nodes by key. Returns number of nodes created."""

    @abstractmethod
    async def merge_edges(self, batch: EdgeBatch) -> int:
        """Upsert relationships. Returns number of relationships created."""

    @abstractmethod
    async def get_node(self, label: str, key_value: str) -> Optional[Dict[str, Any]]:
        """Properties of the node with this key, or None."""

    @abstractmethod
    async def set_properties(self, label: str, key_value: str, props: Mapping[str, Any]) -> bool:
        """Plain SET on an existing node. Returns False if the node does not exist."""

    @abstractmethod
    async def update_locked_fields(
        self, label: str, key_value: str, field_name: str, locked: bool
    ) -> Optional[List[str]]:
        """Atomically add/remove one entry of lockedFields. None if the node does not exist."""

    @abstractmethod
    async def source_article_urls(self, label: str, key_value: str, rel_type: str) -> List[str]:
        """URLs of the articles behind an entity: (n)-[rel_type]->(FundingRound)-[SOURCED_FROM]->(Article)."""

    @abstractmethod
    async def count_nodes(self, label: str) -> int:
        ...

    @abstractmethod
    async def count_edges(self, rel_type: str) -> int:
        ...

    async def close(self) -> None:
        return None


def chunked(rows: Sequence[Any], size: int) -> List[Sequence[Any]]:
    """Split rows into batches of at most `size`."""
    size = max(1, size)
    return [rows[i:i + size] for i in range(0, len(rows), size)]
