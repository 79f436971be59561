"""🔭 Interactive Expansion - One node's neighbors, placed relative to it.

Used when browsing lineage one click at a time rather than rebuilding a full
workflow. Each neighbor gets a relative placement:

    WEST  - input side (read, observed, deleted; writers of a file)
    EAST  - output side (written files; readers of a file)

Renames are placed by which of their two paths the anchor is. Neighbors that
render identically (same label and descriptor) are only surfaced once.
"""

from __future__ import annotations

import asyncio
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rich.console import Console

from ..config import TraversalOptions
from ..core.identity import (
    FileNode,
    InteractionDescriptor,
    Node,
    ProcessNode,
    process_node_from_record,
)
from ..errors import EmptyResultWarning
from ..query.contract import (
    CancellationToken,
    Direction,
    EventStore,
    ProvenanceRequest,
    RequestType,
)
from ..query.neighbors import (
    PEER_REQUESTS,
    NeighborRecord,
    query_neighbors,
    query_process_peers,
)


class Cardinal(str, Enum):
    NORTH = "north"
    SOUTH = "south"
    EAST = "east"
    WEST = "west"

    @property
    def opposite(self) -> "Cardinal":
        return _OPPOSITE[self]


_OPPOSITE = {
    Cardinal.NORTH: Cardinal.SOUTH,
    Cardinal.SOUTH: Cardinal.NORTH,
    Cardinal.EAST: Cardinal.WEST,
    Cardinal.WEST: Cardinal.EAST,
}

# A neighbor, its side relative to the anchor, and the descriptor it is shown with
Placement = tuple[Node, Cardinal, InteractionDescriptor]


def descriptor_to_cardinal(descriptor: InteractionDescriptor, subject: bool) -> Cardinal:
    """Placement of a process-file interaction.

    Args:
        descriptor: How the process touched the file
        subject: True when placing the file next to the process,
            False when placing the process next to the file
    """
    if descriptor.write:
        placement = Cardinal.EAST
    elif descriptor.read or descriptor.observed or descriptor.deleted:
        placement = Cardinal.WEST
    else:
        raise ValueError(f"Indeterminate process-file interaction: {descriptor}")
    return placement if subject else placement.opposite


def horizontal_offset(x: float, dx: float, placement: Cardinal) -> float:
    if placement == Cardinal.WEST:
        return x - dx
    if placement == Cardinal.EAST:
        return x + dx
    return x


def vertical_offset(y: float, dy: float, placement: Cardinal) -> float:
    """Screen coordinates: y grows downwards, so north is y - dy."""
    if placement == Cardinal.NORTH:
        return y - dy
    if placement == Cardinal.SOUTH:
        return y + dy
    return y


def step_size(count: int) -> float:
    """Vertical spacing for `count` nodes stacked on one side."""
    return 0 if count <= 1 else (count * 100) / (count - 1)


@dataclass(frozen=True)
class NodeFilter:
    """Hide neighbors whose attribute contains a value (e.g. 'path:/tmp')."""

    attribute: str
    value: str

    @classmethod
    def parse(cls, text: str) -> "NodeFilter":
        if ":" not in text:
            raise ValueError("Filter format is attribute:value")
        attribute, value = text.split(":", 1)
        return cls(attribute=attribute.strip(), value=value)

    def matches(self, node: Node) -> bool:
        value = getattr(node, self.attribute, None)
        if value is None:
            return False
        return self.value in str(value)

    def __str__(self) -> str:
        return f"{self.attribute}:{self.value}"


@dataclass
class PlacedNode:
    node: Node
    placement: Cardinal
    source: RequestType
    descriptor: InteractionDescriptor
    bidirectional: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return self.node.label, self.descriptor.to_string()

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node.to_dict(),
            "label": self.node.label,
            "placement": self.placement.value,
            "source": self.source.value,
            "descriptor": self.descriptor.facets(),
            "bidirectional": self.bidirectional,
        }


@dataclass
class Expansion:
    """Neighbors of one anchor node."""

    anchor: Node
    placed: list[PlacedNode] = field(default_factory=list)
    duplicates: int = 0
    filtered: int = 0

    def side(self, placement: Cardinal) -> list[PlacedNode]:
        return [p for p in self.placed if p.placement == placement]

    @property
    def west(self) -> list[PlacedNode]:
        return self.side(Cardinal.WEST)

    @property
    def east(self) -> list[PlacedNode]:
        return self.side(Cardinal.EAST)

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor": self.anchor.to_dict(),
            "placed": [p.to_dict() for p in self.placed],
            "duplicates": self.duplicates,
            "filtered": self.filtered,
        }


def _renamed_counterpart(record: NeighborRecord, path: str) -> FileNode:
    return FileNode(
        path=path,
        inode=record.node.inode if record.node.inode is not None else -1,
        event=record.node.event,
        event_time=record.event_time,
        descriptor=InteractionDescriptor(renamed=True),
    )


def _place_file_neighbor(record: NeighborRecord) -> list[Placement]:
    """A file the anchor process touched (and a rename's destination)."""
    if record.descriptor.renamed:
        placed = [(record.node, Cardinal.WEST, record.descriptor)]
        if record.secondary is not None:
            placed.append((record.secondary, Cardinal.EAST, record.secondary.descriptor))
        return placed
    placement = descriptor_to_cardinal(record.descriptor, subject=True)
    return [(record.node, placement, record.descriptor)]


def _place_process_neighbor(
    anchor: FileNode, record: NeighborRecord
) -> list[Placement]:
    """A process that touched the anchor file."""
    process = record.node
    if not record.descriptor.renamed:
        placement = descriptor_to_cardinal(record.descriptor, subject=False)
        return [(process, placement, record.descriptor)]

    # Anchor is the rename destination: the renaming process and the old name are upstream
    if anchor.path == process.dst_path:
        other = _renamed_counterpart(record, process.path)
        return [
            (process, Cardinal.WEST, record.descriptor),
            (other, Cardinal.WEST, other.descriptor),
        ]
    if anchor.path == process.path and process.dst_path:
        other = _renamed_counterpart(record, process.dst_path)
        return [
            (process, Cardinal.EAST, record.descriptor),
            (other, Cardinal.EAST, other.descriptor),
        ]
    raise ValueError(
        f"{anchor.path} is neither source {process.path} nor destination "
        f"{process.dst_path} of the rename"
    )


def _place_peer(record: NeighborRecord) -> list[Placement]:
    if record.source == RequestType.PROCESS_IPC:
        return [(record.node, Cardinal.WEST, record.descriptor)]
    placement = Cardinal.EAST if record.descriptor.read else Cardinal.WEST
    return [(record.node, placement, record.descriptor)]


async def _file_records(
    store: EventStore, anchor: FileNode, token: CancellationToken | None
) -> list[NeighborRecord]:
    if anchor.inode is not None and anchor.inode >= 0:
        return await query_neighbors(store, anchor.identity, Direction.EITHER, token=token)

    # Initial lookup by path only
    request = ProvenanceRequest.build(RequestType.FILE_BY_PATH, path=anchor.path)
    response = await store.query(request, token)
    records = []
    for row in response.records:
        node = process_node_from_record(row)
        records.append(
            NeighborRecord(
                node=node,
                event_time=node.event_time,
                descriptor=node.descriptor,
                source=RequestType.FILE_BY_PATH,
                version=row.get("version"),
            )
        )
    return records


async def expand_node(
    store: EventStore,
    anchor: Node,
    options: TraversalOptions | None = None,
    filters: list[NodeFilter] | tuple[NodeFilter, ...] = (),
    token: CancellationToken | None = None,
    console: Console | None = None,
) -> Expansion:
    """Fetch and place the neighbors of one node.

    Processes: files they touched, plus the process-to-process edges enabled
    in `options`. Files: the processes that touched them.
    """
    options = options or TraversalOptions()
    console = console or Console()
    expansion = Expansion(anchor=anchor)

    if isinstance(anchor, ProcessNode):
        calls = [query_neighbors(store, anchor.identity, Direction.EITHER, token=token)]
        if options.include_ipc and anchor.pgid is not None:
            calls.append(query_process_peers(store, anchor, RequestType.PROCESS_IPC, token))
        if options.include_true_ipc:
            calls.append(query_process_peers(store, anchor, RequestType.PROCESS_TRUE_IPC, token))
        if options.include_net and anchor.pgid is not None:
            calls.append(query_process_peers(store, anchor, RequestType.PROCESS_NET, token))
        tasks = [asyncio.create_task(call) for call in calls]
        try:
            batches = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        records = [record for batch in batches for record in batch]
    elif isinstance(anchor, FileNode):
        records = await _file_records(store, anchor, token)
    else:
        raise TypeError(f"Unsupported node: {anchor!r}")

    if not records:
        warnings.warn(EmptyResultWarning(f"No provenance found for {anchor.label}"), stacklevel=2)
        return expansion

    seen: set[tuple[str, str]] = set()
    for record in records:
        if any(f.matches(record.node) for f in filters):
            expansion.filtered += 1
            continue

        if record.source in PEER_REQUESTS:
            placements = _place_peer(record)
        elif isinstance(anchor, ProcessNode):
            placements = _place_file_neighbor(record)
        else:
            placements = _place_process_neighbor(anchor, record)

        for node, placement, descriptor in placements:
            placed = PlacedNode(
                node=node,
                placement=placement,
                source=record.source,
                descriptor=descriptor,
                bidirectional=record.source == RequestType.PROCESS_IPC,
            )
            if placed.key in seen:
                console.print(f"[dim]   ↳ discarding duplicate {node.label}[/dim]")
                expansion.duplicates += 1
                continue
            seen.add(placed.key)
            expansion.placed.append(placed)

    console.print(
        f"🔭 {anchor.label}: {len(expansion.west)} west, {len(expansion.east)} east"
    )
    return expansion
