"""Property graph: store contract, backends, write policy and synchronizer."""

from .store import GraphStore, GraphStoreError, MergeMode, NodeBatch, EdgeBatch
from .memory_store import InMemoryGraphStore
from .neo4j_store import Neo4jGraphStore
from .connection import create_graph_store
from .write_policy import FieldValue, should_write, plan_field_writes, apply_field_writes
from .synchronizer import (
    GraphSynchronizer,
    GraphSyncResult,
    GraphSyncSummary,
    RoundSyncInput,
    SyncArticle,
)

__all__ = [
    "GraphStore",
    "GraphStoreError",
    "MergeMode",
    "NodeBatch",
    "EdgeBatch",
    "InMemoryGraphStore",
    "Neo4jGraphStore",
    "create_graph_store",
    "FieldValue",
    "should_write",
    "plan_field_writes",
    "apply_field_writes",
    "GraphSynchronizer",
    "GraphSyncResult",
    "GraphSyncSummary",
    "RoundSyncInput",
    "SyncArticle",
]
