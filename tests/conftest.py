"""🧪 Pytest configuration and shared fixtures."""

import asyncio
from datetime import datetime
from pathlib import Path

import pytest
from rich.console import Console

from provgraph.query.contract import EventStore, RetryPolicy
from provgraph.query.duckdb_store import DuckDBEventStore


def at(clock: str) -> datetime:
    """'10:00:03.000' on the day every scenario happens."""
    return datetime.fromisoformat(f"2024-05-01 {clock}")


class ScriptedStore(EventStore):
    """Event store answering from per-request-type handlers.

    Each handler receives the validated params and returns raw records.
    Unscripted request types return no records.
    """

    def __init__(self, handlers=None, failures=None, delay: float = 0.0, **kwargs):
        kwargs.setdefault("console", Console(quiet=True))
        super().__init__(**kwargs)
        self.handlers = handlers or {}
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _execute(self, request):
        self.calls.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            remaining = self.failures.get(request.request_type, 0)
            if remaining:
                self.failures[request.request_type] = remaining - 1
                raise ConnectionError("event store unavailable")
            handler = self.handlers.get(request.request_type)
            return handler(request.params) if handler else []
        finally:
            self.in_flight -= 1

    def calls_of(self, request_type):
        return [c for c in self.calls if c.request_type == request_type]


@pytest.fixture(scope="session")
def project_root():
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def quiet_console():
    """Console that swallows progress output."""
    return Console(quiet=True)


@pytest.fixture
def no_backoff():
    """Retry policy with three attempts and no waiting."""
    return RetryPolicy(attempts=3, backoff_seconds=0, max_backoff_seconds=0)


@pytest.fixture
def scenario_a_events():
    """One job reading /data/in.csv and writing /data/out.csv."""
    return {
        "process_events": [
            {
                "node_name": "node-1",
                "pid": 100,
                "ppid": 1,
                "pgid": 100,
                "birth_time": at("10:00:00.000"),
                "death_time": at("10:00:05.000"),
                "exec_cmd_line": "python make_report.py",
                "exec_cwd": "/data",
            },
        ],
        "fs_events": [
            {
                "node_name": "node-1",
                "pid": 100,
                "event": "CLOSE",
                "event_time": at("10:00:01.000"),
                "path": "/data/in.csv",
                "inode": 7,
                "version": "v-in",
                "bytes_read": 1024,
                "bytes_written": 0,
            },
            {
                "node_name": "node-1",
                "pid": 100,
                "event": "CLOSE",
                "event_time": at("10:00:03.000"),
                "path": "/data/out.csv",
                "inode": 42,
                "version": "v-out",
                "bytes_read": 0,
                "bytes_written": 2048,
            },
        ],
    }


@pytest.fixture
def duckdb_store(quiet_console):
    """In-memory DuckDB store with an empty event schema."""
    store = DuckDBEventStore(":memory:", console=quiet_console)
    store.init_schema()
    yield store
    store.close()


@pytest.fixture
def scenario_store(duckdb_store, scenario_a_events):
    """In-memory DuckDB store seeded with Scenario A."""
    for table, records in scenario_a_events.items():
        duckdb_store.load_records(table, records)
    return duckdb_store
