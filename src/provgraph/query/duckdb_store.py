"""🦆 DuckDB Event Store - Embedded relational store for provenance events.

DuckDB works well for lineage reconstruction because:
- Embedded: no separate service to run next to the tracer
- Columnar: the event tables are append-only and scan-heavy
- Loads CSV / Parquet / DataFrames directly

Example:
    store = DuckDBEventStore("events.duckdb")
    store.init_schema()
    store.load_file("fs_events", "fs_events.parquet")
    response = await store.query(ProvenanceRequest.build("WORKFLOWS"))
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import duckdb
import pandas as pd
from rich.console import Console

from ..core.timeutil import DEFAULT_EPSILON_MS
from ..errors import ValidationError
from .contract import EventStore, ProvenanceRequest, RetryPolicy
from .sql import SCHEMA, build_sql, schema_ddl


class DuckDBEventStore(EventStore):
    """Event store backed by a DuckDB database file (or memory)."""

    def __init__(
        self,
        path: str | Path = ":memory:",
        epsilon_ms: int = DEFAULT_EPSILON_MS,
        retry: RetryPolicy | None = None,
        console: Console | None = None,
        read_only: bool = False,
    ):
        super().__init__(epsilon_ms=epsilon_ms, retry=retry, console=console)
        self.path = str(path)
        self.read_only = read_only
        self._conn: duckdb.DuckDBPyConnection | None = None

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> "DuckDBEventStore":
        """Create a store from environment settings."""
        from ..config import get_settings

        settings = settings or get_settings()
        return cls(settings.duckdb_path, epsilon_ms=settings.epsilon_ms, **kwargs)

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection."""
        if self._conn is None:
            self._conn = duckdb.connect(self.path, read_only=self.read_only)
        return self._conn

    def init_schema(self) -> None:
        """Create every event table (no-op for existing tables)."""
        for statement in schema_ddl():
            self.conn.execute(statement)

    def load_frame(self, table: str, df: pd.DataFrame) -> int:
        """Append a DataFrame to an event table.

        Columns are matched by name; missing columns are left NULL.

        Returns:
            Number of rows inserted
        """
        columns = self._validate_columns(table, list(df.columns))
        if df.empty:
            return 0

        self.conn.register("_df_to_load", df)
        try:
            col_list = ", ".join(columns)
            self.conn.execute(
                f"INSERT INTO {table} ({col_list}) SELECT {col_list} FROM _df_to_load"
            )
        finally:
            self.conn.unregister("_df_to_load")
        return len(df)

    def load_file(self, table: str, path: str | Path) -> int:
        """Append a CSV or Parquet file to an event table."""
        self._validate_columns(table, [])
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix == ".parquet":
            df = pd.read_parquet(path)
        elif suffix == ".csv":
            df = pd.read_csv(path)
        else:
            raise ValidationError(f"Unsupported file type: {path.suffix} (use .csv or .parquet)")

        # Timestamps arrive as strings from CSV
        for column, sql_type in SCHEMA[table].items():
            if sql_type != "TIMESTAMP" or column not in df.columns:
                continue
            if not pd.api.types.is_datetime64_any_dtype(df[column]):
                df[column] = pd.to_datetime(df[column].astype("string").str.rstrip("Z"))
        return self.load_frame(table, df)

    def load_records(self, table: str, records: list[dict[str, Any]]) -> int:
        """Append plain dict rows to an event table."""
        if not records:
            self._validate_columns(table, [])
            return 0
        # object dtype keeps ints as ints next to missing values
        return self.load_frame(table, pd.DataFrame(records, dtype=object))

    def _validate_columns(self, table: str, columns: list[str]) -> list[str]:
        if table not in SCHEMA:
            raise ValidationError(
                f"Unknown table: {table}. Choose from {', '.join(SCHEMA)}"
            )
        normalized = [str(c).lower() for c in columns]
        unknown = [c for c in normalized if c not in SCHEMA[table]]
        if unknown:
            raise ValidationError(f"Unknown column(s) for {table}: {', '.join(unknown)}")
        return normalized

    def count(self, table: str) -> int:
        self._validate_columns(table, [])
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    async def _execute(self, request: ProvenanceRequest) -> list[dict[str, Any]]:
        query = build_sql(request, self.epsilon_for(request))
        # One cursor per request: DuckDB connections are not shared across threads
        cursor = self.conn.cursor()
        df = await asyncio.to_thread(self._fetch, cursor, query.sql, query.params)
        return df.to_dict("records")

    @staticmethod
    def _fetch(
        cursor: duckdb.DuckDBPyConnection, sql: str, params: dict[str, Any]
    ) -> pd.DataFrame:
        try:
            return cursor.execute(sql, params or None).df()
        finally:
            cursor.close()

    def close(self) -> None:
        """Close the connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def aclose(self) -> None:
        self.close()

    def __enter__(self) -> "DuckDBEventStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"DuckDBEventStore(path={self.path}, epsilon_ms={self.epsilon_ms})"
