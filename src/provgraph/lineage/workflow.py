"""🧬 Workflows - Lineage graphs folded from a traversal, and their diffs.

    workflow = await build_file_workflow(store, "/data/out.csv", 42)
    workflow.inputs      # every file the producers (transitively) read
    workflow.processes   # every process on the way

    await fill_workflow_outputs(store, process_workflow)
    comparison = compare_workflows(w1, w2)
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from rich.console import Console

from ..config import TraversalConfig
from ..core.identity import (
    FileNode,
    Node,
    NodeIdentity,
    ProcessNode,
    coerce_int,
    file_node_from_record,
)
from ..core.timeutil import FAR_FUTURE, format_timestamp, parse_timestamp
from ..errors import AmbiguousResultError, TraversalCancelledError, ValidationError
from ..query.contract import (
    CancellationToken,
    Direction,
    EventStore,
    ProvenanceRequest,
    RequestType,
    RetryPolicy,
)
from .scheduler import FrontierScheduler, TraversalResult, TraversalState


@dataclass
class Workflow:
    """Reconstructed lineage: inputs, processes and (separately filled) outputs."""

    id: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    cluster_node: str | None = None
    name: str | None = None

    inputs: list[FileNode] = field(default_factory=list)
    outputs: list[FileNode] = field(default_factory=list)
    processes: list[ProcessNode] = field(default_factory=list)

    seed: NodeIdentity | None = None
    phases: int = 0

    def processes_by_birth(self) -> list[ProcessNode]:
        """Processes in the order they started."""
        return sorted(self.processes, key=lambda p: (p.birth_time or FAR_FUTURE, p.pid))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "cluster_node": self.cluster_node,
            "inputs": [f.to_dict() for f in self.inputs],
            "outputs": [f.to_dict() for f in self.outputs],
            "processes": [p.to_dict() for p in self.processes],
        }


def workflow_from_result(result: TraversalResult, seed: Node) -> Workflow:
    """Partition a finished traversal into a Workflow."""
    if result.state == TraversalState.CANCELLED:
        raise TraversalCancelledError(
            f"Lineage of {seed.label} cancelled after {result.phases} phase(s)"
        )

    workflow = Workflow(seed=seed.identity, phases=result.phases)
    # A file seed is the artifact being explained, not one of its inputs
    workflow.inputs = [f for f in result.files if f.identity != seed.identity]
    workflow.processes = list(result.processes)

    if isinstance(seed, ProcessNode):
        workflow.id = seed.pid
        workflow.start_time = seed.birth_time
        workflow.end_time = seed.death_time
        workflow.cluster_node = seed.cluster_node
        workflow.name = seed.exec_cmd_line or None
    return workflow


async def resolve_file_seed(
    store: EventStore,
    seed: FileNode,
    config: TraversalConfig | None = None,
    console: Console | None = None,
    token: CancellationToken | None = None,
) -> FileNode:
    """Give a path-only file seed the inode of the latest event on that path.

    Warns with AmbiguousResultError when the path had several inodes.
    """
    if seed.inode >= 0:
        return seed
    config = config or TraversalConfig()
    console = console or Console()

    request = ProvenanceRequest.build(RequestType.FILE_BY_PATH, path=seed.path)
    response = await store.query(
        replace(request, epsilon_ms=config.epsilon_ms),
        token,
        RetryPolicy.from_config(config.retry),
    )

    # inode -> time of its latest event
    inodes: dict[int, datetime] = {}
    for record in response.records:
        inode = coerce_int(record.get("inode"))
        if inode is None:
            continue
        event_time = parse_timestamp(record.get("event_time")) or datetime.min
        inodes[inode] = max(event_time, inodes.get(inode, datetime.min))

    if not inodes:
        raise ValidationError(
            f"No events recorded for {seed.path}, give its inode", missing=["inode"]
        )
    inode = max(inodes, key=inodes.__getitem__)
    if len(inodes) > 1:
        warnings.warn(
            AmbiguousResultError(
                f"{seed.path} had {len(inodes)} inodes, using {inode} (latest event)"
            ),
            stacklevel=2,
        )
    console.print(f"📍 {seed.path} resolved to inode {inode}")
    return replace(seed, inode=inode)


async def build_workflow(
    store: EventStore,
    seed: Node,
    seed_constraint: datetime = FAR_FUTURE,
    config: TraversalConfig | None = None,
    console: Console | None = None,
    token: CancellationToken | None = None,
) -> Workflow:
    """Run the scheduler from one seed and fold the visited sets.

    A file seed without inode (-1) is first resolved by path.

    Raises:
        ValidationError: No event recorded for a path-only file seed
        QueryError: A neighbor query failed
        TraversalCancelledError: Deadline exceeded or cancelled
    """
    config = config or TraversalConfig()
    if isinstance(seed, FileNode) and seed.inode < 0:
        seed = await resolve_file_seed(store, seed, config=config, console=console, token=token)
    scheduler = FrontierScheduler(store, config=config, console=console)
    result = await scheduler.run(seed, seed_constraint, token)
    return workflow_from_result(result, seed)


async def build_process_workflow(
    store: EventStore,
    cluster_node: str,
    pid: int,
    birth_time: datetime,
    death_time: datetime | None = None,
    cmd_line: str = "",
    **kwargs: Any,
) -> Workflow:
    """Lineage of everything a (job root) process read, transitively."""
    seed = ProcessNode(
        cluster_node=cluster_node,
        pid=pid,
        birth_time=birth_time,
        death_time=death_time,
        exec_cmd_line=cmd_line,
    )
    return await build_workflow(store, seed, **kwargs)


async def build_file_workflow(
    store: EventStore,
    path: str,
    inode: int,
    **kwargs: Any,
) -> Workflow:
    """Lineage of one file version."""
    return await build_workflow(store, FileNode(path=path, inode=inode), **kwargs)


async def fill_workflow_outputs(
    store: EventStore,
    workflow: Workflow,
    token: CancellationToken | None = None,
) -> Workflow:
    """Fill `outputs` with the files the root process wrote inside its window."""
    request = ProvenanceRequest.build(
        RequestType.PROCESS_FS_ACCESSES,
        clusterNode=workflow.cluster_node,
        pid=workflow.id,
        birthTime=workflow.start_time,
        deathTime=workflow.end_time or FAR_FUTURE,
        direction=Direction.WRITE,
    )
    response = await store.query(request, token)

    seen = {f.identity for f in workflow.outputs}
    for record in response.records:
        node = file_node_from_record(record)
        if node.identity in seen:
            continue
        seen.add(node.identity)
        workflow.outputs.append(node)
    return workflow


@dataclass(frozen=True)
class InputDiff:
    """An input found on one side only (version_diff: same file, other content)."""

    file: FileNode
    version_diff: bool = False


@dataclass
class WorkflowComparison:
    """Inputs unique to each side, shared inputs, and outputs per side."""

    inputs_in_w1: list[InputDiff] = field(default_factory=list)
    inputs_in_w2: list[InputDiff] = field(default_factory=list)
    shared_inputs: list[FileNode] = field(default_factory=list)
    outputs_in_w1: list[FileNode] = field(default_factory=list)
    outputs_in_w2: list[FileNode] = field(default_factory=list)

    @classmethod
    def compare(cls, w1: Workflow, w2: Workflow) -> "WorkflowComparison":
        comparison = cls()

        for f in w1.inputs:
            shared, version_diff = _find_input(f, w2.inputs)
            if shared:
                comparison.shared_inputs.append(f)
            else:
                comparison.inputs_in_w1.append(InputDiff(f, version_diff))

        for f in w2.inputs:
            shared, version_diff = _find_input(f, w1.inputs)
            if not shared:
                comparison.inputs_in_w2.append(InputDiff(f, version_diff))

        comparison.outputs_in_w1 = list(w1.outputs)
        comparison.outputs_in_w2 = list(w2.outputs)
        return comparison

    @property
    def identical_inputs(self) -> bool:
        return not self.inputs_in_w1 and not self.inputs_in_w2

    def to_dict(self) -> dict[str, Any]:
        def diff(d: InputDiff) -> dict[str, Any]:
            return {"file": d.file.to_dict(), "versiondiff": d.version_diff}

        return {
            "inputs_in_w1": [diff(d) for d in self.inputs_in_w1],
            "inputs_in_w2": [diff(d) for d in self.inputs_in_w2],
            "shared_inputs": [f.to_dict() for f in self.shared_inputs],
            "outputs_in_w1": [f.to_dict() for f in self.outputs_in_w1],
            "outputs_in_w2": [f.to_dict() for f in self.outputs_in_w2],
        }


def _find_input(file: FileNode, others: list[FileNode]) -> tuple[bool, bool]:
    """(same path+inode+version found, same path+inode with another version found)."""
    shared = False
    version_diff = False
    for other in others:
        if other.path != file.path or other.inode != file.inode:
            continue
        if other.version == file.version:
            shared = True
        else:
            version_diff = True
    return shared, version_diff


def compare_workflows(w1: Workflow, w2: Workflow) -> WorkflowComparison:
    """Diff the inputs of two workflows; outputs are listed per side."""
    return WorkflowComparison.compare(w1, w2)
