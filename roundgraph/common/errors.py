"""
Exception root for the package.

Component-specific errors live next to the code that raises them
(OracleError in analyst.oracle, GraphStoreError in graph.store,
BraveAPIError in common.brave_client) and all derive from RoundgraphError
so callers can catch the whole family at one seam.

"Not a funding article", "below threshold" and "candidate unreachable" are
NOT errors: they surface as None / skipped results.
"""


class RoundgraphError(Exception):
    """Base class for fatal errors surfaced to the caller."""
    pass
