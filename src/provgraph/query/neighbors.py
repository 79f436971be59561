"""🧭 Neighbor Queries - One hop of the lineage graph.

    query_neighbors(store, ProcessIdentity, READ, t)   # files the process read before t
    query_neighbors(store, FileIdentity, WRITE, t)     # processes that wrote the file before t
    query_process_peers(store, node, PROCESS_NET)      # processes talking to node

The fuzzy lifetime join and the `eventTime <= constraintTime` bound are
applied by the store.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from ..core.identity import (
    FileIdentity,
    FileNode,
    InteractionDescriptor,
    Node,
    NodeIdentity,
    ProcessIdentity,
    ProcessNode,
    file_node_from_record,
    process_node_from_record,
)
from ..core.timeutil import FAR_FUTURE
from .contract import (
    CancellationToken,
    Direction,
    EventStore,
    ProvenanceRequest,
    RequestType,
    RetryPolicy,
)

PEER_REQUESTS = (
    RequestType.PROCESS_IPC,
    RequestType.PROCESS_TRUE_IPC,
    RequestType.PROCESS_NET,
)


@dataclass
class NeighborRecord:
    """A node reached in one hop, plus how and when it was reached."""

    node: Node
    event_time: datetime | None
    descriptor: InteractionDescriptor
    source: RequestType
    version: str | None = None

    # Rename destination surfaced next to the source file
    secondary: FileNode | None = None

    @property
    def identity(self) -> NodeIdentity:
        return self.node.identity


def process_params(identity: ProcessIdentity | ProcessNode) -> dict[str, Any]:
    """Request params identifying a process (living processes end at FAR_FUTURE)."""
    return {
        "clusterNode": identity.cluster_node,
        "pid": identity.pid,
        "birthTime": identity.birth_time,
        "deathTime": identity.death_time or FAR_FUTURE,
    }


def _rename_destination(node: FileNode) -> FileNode | None:
    if not node.descriptor.renamed or not node.dst_path:
        return None
    return FileNode(
        path=node.dst_path,
        inode=node.inode,
        event=node.event,
        event_time=node.event_time,
        descriptor=InteractionDescriptor(renamed=True),
    )


async def query_neighbors(
    store: EventStore,
    identity: NodeIdentity,
    direction: Direction | str = Direction.EITHER,
    constraint_time: datetime | None = None,
    token: CancellationToken | None = None,
    epsilon_ms: int | None = None,
    retry: RetryPolicy | None = None,
) -> list[NeighborRecord]:
    """Query the nodes one hop away from `identity` on the other side of the graph.

    Args:
        store: Event store to query
        identity: Anchor process or file
        direction: READ, WRITE or EITHER interactions
        constraint_time: Only events at or before this time
        token: Cancellation token for the traversal
        epsilon_ms: Skew tolerance (default: the store's)
        retry: Retry policy (default: the store's)

    Returns:
        Neighbor records in store order (event time ascending)
    """
    direction = Direction(direction)

    if isinstance(identity, ProcessIdentity):
        request = ProvenanceRequest.build(
            RequestType.PROCESS_FS_ACCESSES,
            **process_params(identity),
            direction=direction,
            constraintTime=constraint_time,
        )
        response = await store.query(replace(request, epsilon_ms=epsilon_ms), token, retry)
        records = []
        for record in response.records:
            node = file_node_from_record(record)
            records.append(
                NeighborRecord(
                    node=node,
                    event_time=node.event_time,
                    descriptor=node.descriptor,
                    source=request.request_type,
                    version=node.version,
                    secondary=_rename_destination(node),
                )
            )
        return records

    if isinstance(identity, FileIdentity):
        request = ProvenanceRequest.build(
            RequestType.FILE_BY_INODE,
            path=identity.path,
            inode=identity.inode,
            direction=direction,
            constraintTime=constraint_time,
        )
        response = await store.query(replace(request, epsilon_ms=epsilon_ms), token, retry)
        records = []
        for record in response.records:
            node = process_node_from_record(record)
            records.append(
                NeighborRecord(
                    node=node,
                    event_time=node.event_time,
                    descriptor=node.descriptor,
                    source=request.request_type,
                    version=record.get("version"),
                )
            )
        return records

    raise TypeError(f"Unsupported node identity: {identity!r}")


async def query_process_peers(
    store: EventStore,
    node: ProcessNode,
    request_type: RequestType,
    token: CancellationToken | None = None,
    epsilon_ms: int | None = None,
    retry: RetryPolicy | None = None,
) -> list[NeighborRecord]:
    """Processes linked to `node` by process group, IPC or network."""
    if request_type not in PEER_REQUESTS:
        raise ValueError(f"{request_type} is not a process-to-process request")

    params = process_params(node)
    if request_type != RequestType.PROCESS_TRUE_IPC:
        params["pgid"] = node.pgid
    else:
        params.pop("deathTime")

    request = ProvenanceRequest.build(request_type, **params)
    response = await store.query(replace(request, epsilon_ms=epsilon_ms), token, retry)

    # Group membership carries no direction; IPC and net rows say 'read'/'write'
    directed = request_type != RequestType.PROCESS_IPC
    records = []
    for record in response.records:
        peer = process_node_from_record(record, ipc=directed)
        records.append(
            NeighborRecord(
                node=peer,
                event_time=peer.death_time,
                descriptor=peer.descriptor,
                source=request_type,
            )
        )
    return records
