"""roundgraph - funding news extraction, round grouping and graph sync."""

__version__ = "0.1.0"
