"""
Graph store connection management.

Builds the configured GraphStore (Neo4j or in-memory) from settings.
"""

import logging
from typing import Optional

from neo4j import AsyncGraphDatabase

from .memory_store import InMemoryGraphStore
from .neo4j_store import Neo4jGraphStore
from .store import GraphStore
from ..config.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def get_neo4j_driver(config: Optional[Settings] = None):
    """
    Create an async Neo4j driver.

    Raises:
        ValueError: If NEO4J_PASSWORD is not set
    """
    config = config or default_settings
    if not config.neo4j_password:
        raise ValueError("NEO4J_PASSWORD not set")

    logger.debug(f"Connecting to Neo4j at {config.neo4j_uri} (database: {config.neo4j_database})")
    return AsyncGraphDatabase.driver(config.neo4j_uri, auth=(config.neo4j_user, config.neo4j_password))


def create_graph_store(config: Optional[Settings] = None) -> GraphStore:
    """GraphStore for settings.graph_backend ("neo4j" or "memory")."""
    config = config or default_settings
    backend = config.graph_backend.lower()
    if backend == "memory":
        logger.info("Using in-memory graph store")
        return InMemoryGraphStore()
    if backend == "neo4j":
        return Neo4jGraphStore(get_neo4j_driver(config), database=config.neo4j_database)
    raise ValueError(f"Unknown graph backend: {config.graph_backend}")
