"""
Neo4j unique-key constraints.

Constraint names and key properties are a stable contract: MERGE is only
idempotent under concurrent writers when the key is backed by a uniqueness
constraint.
"""

import logging
from typing import List, Optional, Tuple

from .store import ARTICLE, COMPANY, FUNDING_ROUND, INVESTOR, LOCATION, NODE_KEYS

logger = logging.getLogger(__name__)

# (constraint name, label)
CONSTRAINTS: List[Tuple[str, str]] = [
    ("company_name", COMPANY),
    ("investor_name", INVESTOR),
    ("funding_round_key", FUNDING_ROUND),
    ("article_url", ARTICLE),
    ("location_name", LOCATION),
]


def constraint_statements() -> List[str]:
    """CREATE CONSTRAINT ... IF NOT EXISTS statements for every node key."""
    statements = []
    for name, label in CONSTRAINTS:
        var = label[0].lower()
        statements.append(
            f"CREATE CONSTRAINT {name} IF NOT EXISTS "
            f"FOR ({var}:{label}) REQUIRE {var}.{NODE_KEYS[label]} IS UNIQUE"
        )
    return statements


async def ensure_constraints(driver, database: Optional[str] = None) -> None:
    """
    Create all constraints; an existing equivalent constraint is not an error.

    Args:
        driver: neo4j AsyncDriver
        database: Neo4j database name
    """
    async with driver.session(database=database) as session:
        for statement in constraint_statements():
            try:
                result = await session.run(statement)
                await result.consume()
                logger.debug(f"Ensured: {statement[:60]}...")
            except Exception as e:
                error_str = str(e).lower()
                if "already exists" in error_str or "equivalent" in error_str:
                    logger.debug(f"Constraint already exists: {statement[:60]}")
                else:
                    raise
