"""🔁 Frontier Scheduler - Bipartite backward traversal of the lineage graph.

The traversal alternates between two phases until both frontiers are empty:

    EXPAND_PROCESSES: files each process READ before its constraint time
    EXPAND_FILES:     processes that WROTE each file before its constraint time

Each phase drains its frontier, marks every unvisited node visited, and
queries all of them concurrently (at most `max_concurrency` in flight). The
phase ends at a barrier: new entries only start in the next phase, so every
query of a phase sees the same frontier snapshot. A failed query aborts the
traversal; an exceeded deadline ends it in CANCELLED.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from rich.console import Console

from ..config import TraversalConfig
from ..core.identity import FileNode, Node, NodeIdentity, NodeKind, ProcessNode
from ..core.timeutil import FAR_FUTURE
from ..errors import TraversalCancelledError
from ..query.contract import (
    CancellationToken,
    Direction,
    EventStore,
    RequestType,
    RetryPolicy,
)
from ..query.neighbors import NeighborRecord, query_neighbors, query_process_peers
from .frontier import Frontier, FrontierEntry
from .visited import VisitedSet

NeighborFn = Callable[[FrontierEntry, CancellationToken], Awaitable[list[NeighborRecord]]]


class TraversalState(str, Enum):
    EXPAND_PROCESSES = "expand_processes"
    EXPAND_FILES = "expand_files"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass
class TraversalResult:
    """Visited sets after a traversal, partitioned by node kind."""

    processes: VisitedSet
    files: VisitedSet
    state: TraversalState
    seed: NodeIdentity | None = None
    phases: int = 0
    queries: int = 0

    # parent -> children edges in discovery order
    edges: list[tuple[NodeIdentity, NodeIdentity]] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.state == TraversalState.DONE


def tightened(parent_constraint: datetime, event_time: datetime | None) -> datetime:
    """Constraint for a discovered node: never later than its parent's."""
    if event_time is None:
        return parent_constraint
    return min(parent_constraint, event_time)


class FrontierScheduler:
    """Runs one lineage reconstruction against an event store.

    Example:
        scheduler = FrontierScheduler(store, TraversalConfig(max_concurrency=4))
        result = await scheduler.run(seed_file_node)
        result.processes, result.files
    """

    def __init__(
        self,
        store: EventStore,
        config: TraversalConfig | None = None,
        console: Console | None = None,
    ):
        self.store = store
        self.config = config or TraversalConfig()
        self.console = console or Console()
        self.retry = RetryPolicy.from_config(self.config.retry)

    @property
    def options(self):
        return self.config.options

    async def run(
        self,
        seed: Node,
        seed_constraint: datetime = FAR_FUTURE,
        token: CancellationToken | None = None,
    ) -> TraversalResult:
        """Expand from a single seed until both frontiers are empty.

        Args:
            seed: Starting process or file
            seed_constraint: Upper bound on event time for the seed's neighbors
            token: Cancellation token (defaults to the configured deadline)

        Raises:
            QueryError: A neighbor query failed (no partial result)
        """
        token = token or CancellationToken.with_deadline(self.config.deadline_seconds)

        process_frontier, file_frontier = Frontier(), Frontier()
        result = TraversalResult(
            processes=VisitedSet(),
            files=VisitedSet(),
            state=TraversalState.DONE,
            seed=seed.identity,
        )

        entry = FrontierEntry(node=seed, constraint_time=seed_constraint)
        if seed.kind == NodeKind.PROCESS:
            process_frontier.push(entry)
            state = TraversalState.EXPAND_PROCESSES
        else:
            file_frontier.push(entry)
            state = TraversalState.EXPAND_FILES

        self.console.print(f"🌱 Tracing lineage of [cyan]{seed.label}[/cyan]")

        while state not in (TraversalState.DONE, TraversalState.CANCELLED):
            try:
                if state == TraversalState.EXPAND_PROCESSES:
                    await self._process_phase(process_frontier, file_frontier, result, token)
                else:
                    await self._file_phase(file_frontier, process_frontier, result, token)
            except TraversalCancelledError as e:
                self.console.print(f"[yellow]⏹️ Traversal cancelled: {e}[/yellow]")
                result.state = TraversalState.CANCELLED
                return result

            result.phases += 1
            state = self._next_state(state, process_frontier, file_frontier)

        result.state = state
        self.console.print(
            f"[green]✓[/green] Lineage complete: {len(result.processes)} process(es), "
            f"{len(result.files)} file(s) in {result.phases} phase(s)"
        )
        return result

    @staticmethod
    def _next_state(
        state: TraversalState,
        process_frontier: Frontier,
        file_frontier: Frontier,
    ) -> TraversalState:
        """Switch sides when the opposite frontier has work, else stay, else stop."""
        if state == TraversalState.EXPAND_PROCESSES:
            opposite, same = file_frontier, process_frontier
            switch = TraversalState.EXPAND_FILES
        else:
            opposite, same = process_frontier, file_frontier
            switch = TraversalState.EXPAND_PROCESSES

        if opposite:
            return switch
        # Only reachable with process-to-process edges enabled
        if same:
            return state
        return TraversalState.DONE

    async def expand_frontier(
        self,
        kind: NodeKind,
        frontier: Frontier,
        visited: VisitedSet,
        neighbor_fn: NeighborFn,
        token: CancellationToken,
    ) -> list[tuple[FrontierEntry, list[NeighborRecord]]]:
        """Drain a frontier and query every unvisited entry concurrently.

        Returns:
            (entry, neighbor records) for each expanded entry, in drain order
        """
        batch: list[FrontierEntry] = []
        for entry in frontier.drain():
            if not visited.add(entry.node):
                self.console.print(f"[dim]   ↳ already visited: {entry.node.label}[/dim]")
                continue
            batch.append(entry)

        if not batch:
            return []

        self.console.print(f"🔎 Expanding {len(batch)} {kind.value} node(s)")
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def expand_one(entry: FrontierEntry) -> list[NeighborRecord]:
            async with semaphore:
                token.check()
                return await neighbor_fn(entry, token)

        tasks = [asyncio.create_task(expand_one(entry)) for entry in batch]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return list(zip(batch, results))

    async def _process_neighbors(
        self,
        entry: FrontierEntry,
        token: CancellationToken,
    ) -> list[NeighborRecord]:
        node = entry.node
        records = await query_neighbors(
            self.store,
            node.identity,
            Direction.READ,
            entry.constraint_time,
            token,
            **self._query_settings(),
        )
        # Sequential so one entry never holds more than one in-flight query
        for request_type in self._peer_requests(node):
            records.extend(
                await query_process_peers(
                    self.store, node, request_type, token, **self._query_settings()
                )
            )
        return records

    def _query_settings(self) -> dict:
        """Skew tolerance and retry policy of this traversal, for every query."""
        return {"epsilon_ms": self.config.epsilon_ms, "retry": self.retry}

    def _peer_requests(self, node: ProcessNode) -> list[RequestType]:
        requests = []
        # Group and net queries need the process group
        if self.options.include_ipc and node.pgid is not None:
            requests.append(RequestType.PROCESS_IPC)
        if self.options.include_true_ipc:
            requests.append(RequestType.PROCESS_TRUE_IPC)
        if self.options.include_net and node.pgid is not None:
            requests.append(RequestType.PROCESS_NET)
        return requests

    async def _file_neighbors(
        self,
        entry: FrontierEntry,
        token: CancellationToken,
    ) -> list[NeighborRecord]:
        return await query_neighbors(
            self.store,
            entry.identity,
            Direction.WRITE,
            entry.constraint_time,
            token,
            **self._query_settings(),
        )

    async def _process_phase(
        self,
        process_frontier: Frontier,
        file_frontier: Frontier,
        result: TraversalResult,
        token: CancellationToken,
    ) -> None:
        expanded = await self.expand_frontier(
            NodeKind.PROCESS, process_frontier, result.processes, self._process_neighbors, token
        )
        for entry, records in expanded:
            result.queries += 1 + len(self._peer_requests(entry.node))
            for record in records:
                if isinstance(record.node, FileNode):
                    self._enqueue(entry, record.node, record, file_frontier, result.files, result)
                    if record.secondary is not None:
                        self._enqueue(
                            entry, record.secondary, record, file_frontier, result.files, result
                        )
                else:
                    # Peer processes: constraint = min(parent constraint, peer death)
                    self._enqueue(
                        entry, record.node, record, process_frontier, result.processes, result
                    )

    async def _file_phase(
        self,
        file_frontier: Frontier,
        process_frontier: Frontier,
        result: TraversalResult,
        token: CancellationToken,
    ) -> None:
        expanded = await self.expand_frontier(
            NodeKind.FILE, file_frontier, result.files, self._file_neighbors, token
        )
        for entry, records in expanded:
            result.queries += 1
            if records:
                version = result.files.resolve_version(
                    entry.identity, [(r.event_time, r.version) for r in records]
                )
                self.console.print(
                    f"   📄 {entry.node.label}: {len(records)} producer record(s), "
                    f"version {version or 'N/A'}"
                )
            for record in records:
                self._enqueue(
                    entry, record.node, record, process_frontier, result.processes, result
                )

    def _enqueue(
        self,
        parent: FrontierEntry,
        node: Node,
        record: NeighborRecord,
        frontier: Frontier,
        visited: VisitedSet,
        result: TraversalResult,
    ) -> None:
        if node.identity in visited:
            self.console.print(f"[dim]   ↳ skipping visited {node.label}[/dim]")
            return
        constraint = tightened(parent.constraint_time, record.event_time)
        frontier.push(
            FrontierEntry(
                node=node,
                constraint_time=constraint,
                source_interaction=record.descriptor,
                parent=parent.identity,
                version=record.version,
            )
        )
        result.edges.append((parent.identity, node.identity))
