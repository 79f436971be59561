"""📡 Query Layer - Event stores and the request contract they implement.

Stores:
- DuckDBEventStore: embedded relational store (schema, loaders, SQL)
- RestEventStore: remote `/provenance` endpoint over HTTP
"""

from .contract import (
    OPTIONAL_PARAMS,
    REQUIRED_PARAMS,
    CancellationToken,
    Direction,
    EventStore,
    ProvenanceRequest,
    ProvenanceResponse,
    RequestType,
    RetryPolicy,
    normalize_record,
)
from .duckdb_store import DuckDBEventStore
from .neighbors import NeighborRecord, query_neighbors, query_process_peers
from .rest_store import RestEventStore
from .sql import SQLQuery, build_sql, fuzzy_lt, schema_ddl

__all__ = [
    # Contract
    "RequestType",
    "Direction",
    "REQUIRED_PARAMS",
    "OPTIONAL_PARAMS",
    "ProvenanceRequest",
    "ProvenanceResponse",
    "normalize_record",
    "RetryPolicy",
    "CancellationToken",
    "EventStore",
    # Stores
    "DuckDBEventStore",
    "RestEventStore",
    # SQL
    "SQLQuery",
    "build_sql",
    "fuzzy_lt",
    "schema_ddl",
    # Neighbors
    "NeighborRecord",
    "query_neighbors",
    "query_process_peers",
]
