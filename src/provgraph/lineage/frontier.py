"""🌊 Frontier - Nodes waiting to be expanded in the next phase.

A heap ordered by constraint time, latest first. The scheduler drains a
frontier completely at the start of each phase, so pop order only affects
discovery order (tie-breaks and duplicate logging), never membership.
"""

from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass, field
from datetime import datetime

from ..core.identity import InteractionDescriptor, Node, NodeIdentity
from ..core.timeutil import microseconds_since_epoch


@dataclass
class FrontierEntry:
    """A node to expand, bounded by the time it was reached."""

    node: Node
    constraint_time: datetime
    source_interaction: InteractionDescriptor = field(default_factory=InteractionDescriptor)
    parent: NodeIdentity | None = None

    # Version carried by the record that discovered this file
    version: str | None = None

    @property
    def identity(self) -> NodeIdentity:
        return self.node.identity


class Frontier:
    """Max-heap of FrontierEntry keyed on constraint time.

    Example:
        frontier = Frontier()
        frontier.push(FrontierEntry(node, constraint_time=t))
        for entry in frontier.drain():
            ...
    """

    def __init__(self):
        self._heap: list[tuple[int, int, FrontierEntry]] = []
        self._counter = itertools.count()

    def push(self, entry: FrontierEntry) -> None:
        key = -microseconds_since_epoch(entry.constraint_time)
        heapq.heappush(self._heap, (key, next(self._counter), entry))

    def pop(self) -> FrontierEntry:
        """Remove the entry with the latest constraint time."""
        if not self._heap:
            raise IndexError("pop from empty frontier")
        return heapq.heappop(self._heap)[2]

    def drain(self) -> list[FrontierEntry]:
        """Empty the frontier, latest constraint first (ties: insertion order)."""
        entries = []
        while self._heap:
            entries.append(self.pop())
        return entries

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)
