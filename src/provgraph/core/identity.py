"""🪪 Node Identity - Processes and files in a lineage graph.

A lineage graph is bipartite:
- ProcessIdentity: (cluster node, pid, birth, death) - pid reuse inside one
  lifetime window is assumed not to happen
- FileIdentity: (path, inode) - path plus inode narrows inode reuse collisions

Two records with the same identity are the same logical entity.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from .timeutil import format_timestamp, parse_timestamp


class NodeKind(str, Enum):
    """The two sides of the lineage graph."""

    PROCESS = "process"
    FILE = "file"


@dataclass(frozen=True)
class ProcessIdentity:
    """Identifies one process instance on one cluster node."""

    cluster_node: str
    pid: int
    birth_time: datetime
    death_time: datetime | None = None

    kind: ClassVar[NodeKind] = NodeKind.PROCESS


@dataclass(frozen=True)
class FileIdentity:
    """Identifies one file instance."""

    path: str
    inode: int

    kind: ClassVar[NodeKind] = NodeKind.FILE


NodeIdentity = ProcessIdentity | FileIdentity


@dataclass(frozen=True)
class InteractionDescriptor:
    """How a process and a file (or two processes) interacted."""

    read: bool = False
    write: bool = False
    observed: bool = False
    deleted: bool = False
    renamed: bool = False

    @classmethod
    def from_fs_event(
        cls,
        event: str | None,
        bytes_read: int | None = -1,
        bytes_written: int | None = -1,
    ) -> "InteractionDescriptor":
        """Derive facets from a filesystem event kind and its byte counters.

        A CLOSE moving no bytes in either direction is an observation.
        """
        event = (event or "").upper()
        bytes_read = coerce_int(bytes_read, default=-1)
        bytes_written = coerce_int(bytes_written, default=-1)

        if event == "READ":
            return cls(read=True)
        if event in ("WRITE", "CREATE"):
            return cls(write=True)
        if event == "CLOSE":
            return cls(
                read=bytes_read > 0,
                write=bytes_written > 0,
                observed=bytes_read <= 0 and bytes_written <= 0,
            )
        if event == "UNLINK":
            return cls(deleted=True)
        if event == "RENAME":
            return cls(renamed=True)
        return cls()

    @classmethod
    def from_ipc_event(cls, event: str | None) -> "InteractionDescriptor":
        """Derive facets from a process-to-process event ('read' / 'write')."""
        event = (event or "").lower()
        return cls(read=event == "read", write=event == "write")

    def to_string(self) -> str:
        """Concatenated facet names, e.g. 'readwrite'."""
        return "".join(name for name in self.facets())

    def facets(self) -> list[str]:
        """Names of the facets that are set, in a fixed order."""
        return [
            name
            for name in ("read", "write", "observed", "deleted", "renamed")
            if getattr(self, name)
        ]


@dataclass
class ProcessNode:
    """A process instance together with what the store knows about it."""

    cluster_node: str
    pid: int
    birth_time: datetime
    death_time: datetime | None = None
    ppid: int | None = None
    pgid: int | None = None
    exec_cmd_line: str = ""
    exec_cwd: str | None = None

    # Interaction that surfaced this process (if any)
    event: str | None = None
    event_time: datetime | None = None
    path: str | None = None
    dst_path: str | None = None
    inode: int | None = None
    descriptor: InteractionDescriptor = field(default_factory=InteractionDescriptor)

    kind: ClassVar[NodeKind] = NodeKind.PROCESS

    @property
    def identity(self) -> ProcessIdentity:
        return ProcessIdentity(
            cluster_node=self.cluster_node,
            pid=self.pid,
            birth_time=self.birth_time,
            death_time=self.death_time,
        )

    @property
    def label(self) -> str:
        return (
            f"{self.exec_cmd_line} - {self.cluster_node} pid {self.pid} "
            f"birth {format_timestamp(self.birth_time)}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["descriptor"] = self.descriptor.facets()
        return data


@dataclass
class FileNode:
    """A file instance together with what the store knows about it."""

    path: str
    inode: int
    dst_path: str | None = None
    version: str | None = None

    # Interaction that surfaced this file (if any)
    event: str | None = None
    event_time: datetime | None = None
    descriptor: InteractionDescriptor = field(default_factory=InteractionDescriptor)

    kind: ClassVar[NodeKind] = NodeKind.FILE

    @property
    def identity(self) -> FileIdentity:
        return FileIdentity(path=self.path, inode=self.inode)

    @property
    def label(self) -> str:
        return f"{self.path} (inode {self.inode})"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["descriptor"] = self.descriptor.facets()
        return data


Node = ProcessNode | FileNode


def coerce_int(value: Any, default: int | None = None) -> int | None:
    """Coerce store values (numpy ints, floats from nullable columns) to int."""
    if value is None:
        return default
    if isinstance(value, float) and math.isnan(value):
        return default
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return default


def coerce_str(value: Any) -> str | None:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    return str(value)


def process_node_from_record(record: dict[str, Any], ipc: bool = False) -> ProcessNode:
    """Build a ProcessNode from a store record (lower-case keys).

    Args:
        record: Row returned by the event store
        ipc: Record comes from a process-to-process query ('read'/'write' events)
    """
    event = coerce_str(record.get("event"))
    if ipc:
        descriptor = InteractionDescriptor.from_ipc_event(event)
    else:
        descriptor = InteractionDescriptor.from_fs_event(
            event, record.get("bytes_read"), record.get("bytes_written")
        )

    return ProcessNode(
        cluster_node=str(record.get("node_name")),
        pid=coerce_int(record.get("pid")),
        birth_time=parse_timestamp(record.get("birth_time")),
        death_time=parse_timestamp(record.get("death_time")),
        ppid=coerce_int(record.get("ppid")),
        pgid=coerce_int(record.get("pgid")),
        exec_cmd_line=coerce_str(record.get("exec_cmd_line")) or "",
        exec_cwd=coerce_str(record.get("exec_cwd")),
        event=event,
        event_time=parse_timestamp(record.get("event_time")),
        path=coerce_str(record.get("path")),
        dst_path=coerce_str(record.get("dst_path")),
        inode=coerce_int(record.get("inode")),
        descriptor=descriptor,
    )


def file_node_from_record(record: dict[str, Any]) -> FileNode:
    """Build a FileNode from a store record (lower-case keys)."""
    event = coerce_str(record.get("event"))
    return FileNode(
        path=str(record.get("path")),
        inode=coerce_int(record.get("inode"), default=-1),
        dst_path=coerce_str(record.get("dst_path")),
        version=coerce_str(record.get("version")),
        event=event,
        event_time=parse_timestamp(record.get("event_time")),
        descriptor=(
            InteractionDescriptor.from_fs_event(
                event, record.get("bytes_read"), record.get("bytes_written")
            )
            if event
            else InteractionDescriptor()
        ),
    )
