"""Query engine access for duckattach."""

from duckattach.engine.pool import (
    DuckDBConnectionPool,
    DuckDBHandle,
    EngineConnectionPool,
    EngineHandle,
)

__all__ = [
    "EngineConnectionPool",
    "EngineHandle",
    "DuckDBConnectionPool",
    "DuckDBHandle",
]
