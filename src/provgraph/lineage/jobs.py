"""🗂️ Scheduler Jobs - Workflows tracked by the cluster scheduler.

Besides traversal, lineage can come straight from scheduler bookkeeping:
- list_workflows / workflow_output_files / workflows_for_output_file
- job_processes: candidate root processes for a job description
- process_logs / file_commit_id: details shown next to a node
- reproduction_plan: how to rebuild a given file
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from rich.console import Console

from ..config import TraversalConfig
from ..core.identity import (
    FileIdentity,
    FileNode,
    ProcessNode,
    coerce_int,
    coerce_str,
    process_node_from_record,
)
from ..core.timeutil import parse_timestamp
from ..errors import AmbiguousResultError, EmptyResultWarning
from ..query.contract import CancellationToken, EventStore, ProvenanceRequest, RequestType
from ..query.neighbors import process_params
from .workflow import build_file_workflow


@dataclass
class SchedulerWorkflow:
    """A workflow run as recorded by the scheduler."""

    id: int | None
    name: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    definition1: str | None = None
    definition2: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "SchedulerWorkflow":
        return cls(
            id=coerce_int(record.get("id")),
            name=coerce_str(record.get("name")),
            start_time=parse_timestamp(record.get("start_time")),
            end_time=parse_timestamp(record.get("end_time")),
            definition1=coerce_str(record.get("definition1")),
            definition2=coerce_str(record.get("definition2")),
        )


@dataclass
class JobProcess:
    """A process whose command line matches a job description."""

    pid: int
    cmd_line: str
    start_time: datetime | None
    end_time: datetime | None
    cluster_node: str
    ppid: int | None = None
    pgid: int | None = None
    exec_cwd: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "JobProcess":
        return cls(
            pid=coerce_int(record.get("id")),
            cmd_line=coerce_str(record.get("name")) or "",
            start_time=parse_timestamp(record.get("start_time")),
            end_time=parse_timestamp(record.get("end_time")),
            cluster_node=str(record.get("owner")),
            ppid=coerce_int(record.get("ppid")),
            pgid=coerce_int(record.get("pgid")),
            exec_cwd=coerce_str(record.get("exec_cwd")),
        )

    def to_node(self) -> ProcessNode:
        return ProcessNode(
            cluster_node=self.cluster_node,
            pid=self.pid,
            birth_time=self.start_time,
            death_time=self.end_time,
            ppid=self.ppid,
            pgid=self.pgid,
            exec_cmd_line=self.cmd_line,
            exec_cwd=self.exec_cwd,
        )


@dataclass
class LogEntry:
    log_time: datetime | None
    level: str | None
    message: str | None
    pid: int | None = None


async def list_workflows(
    store: EventStore, token: CancellationToken | None = None
) -> list[SchedulerWorkflow]:
    """All scheduler workflows, newest first."""
    response = await store.query(ProvenanceRequest.build(RequestType.WORKFLOWS), token)
    return [SchedulerWorkflow.from_record(r) for r in response.records]


async def workflow_output_files(
    store: EventStore,
    workflow: SchedulerWorkflow,
    token: CancellationToken | None = None,
) -> list[FileNode]:
    """Files written by the last step of a workflow, inside its window."""
    request = ProvenanceRequest.build(
        RequestType.WORKFLOW_OUTPUT_FILES,
        workflowId=workflow.id,
        windowStart=workflow.start_time,
        windowEnd=workflow.end_time,
    )
    response = await store.query(request, token)
    return [
        FileNode(path=str(r.get("path")), inode=coerce_int(r.get("inode"), -1))
        for r in response.records
    ]


async def workflows_for_output_file(
    store: EventStore,
    path: str,
    inode: int,
    token: CancellationToken | None = None,
) -> list[SchedulerWorkflow]:
    """Scheduler workflows whose jobs wrote the given file."""
    request = ProvenanceRequest.build(RequestType.OUTPUT_FILE_WORKFLOW, path=path, inode=inode)
    response = await store.query(request, token)
    return [SchedulerWorkflow.from_record(r) for r in response.records]


async def job_processes(
    store: EventStore,
    job_description: str,
    token: CancellationToken | None = None,
) -> list[JobProcess]:
    """Processes whose command line contains the job description, newest first."""
    request = ProvenanceRequest.build(
        RequestType.WORKFLOW_PROCESSES, jobDescription=job_description
    )
    response = await store.query(request, token)
    return [JobProcess.from_record(r) for r in response.records]


async def find_processes(
    store: EventStore,
    process_name: str,
    token: CancellationToken | None = None,
) -> list[ProcessNode]:
    """Seed candidates: processes whose command line contains `process_name`."""
    request = ProvenanceRequest.build(RequestType.PROCESS_INITIAL, processName=process_name)
    response = await store.query(request, token)
    return [process_node_from_record(r) for r in response.records]


async def process_logs(
    store: EventStore,
    process: ProcessNode,
    token: CancellationToken | None = None,
) -> list[LogEntry]:
    """Log lines of a process (and of its parent) during its lifetime."""
    request = ProvenanceRequest.build(
        RequestType.PROCESS_LOGS,
        **process_params(process),
        ppid=process.ppid if process.ppid is not None else process.pid,
    )
    response = await store.query(request, token)
    return [
        LogEntry(
            log_time=parse_timestamp(r.get("log_time")),
            level=coerce_str(r.get("log_level")),
            message=coerce_str(r.get("log_msg")),
            pid=coerce_int(r.get("pid")),
        )
        for r in response.records
    ]


async def file_commit_id(
    store: EventStore,
    file: FileIdentity | FileNode,
    writer: ProcessNode,
    token: CancellationToken | None = None,
) -> str | None:
    """Content version a process produced for a file.

    Warns with EmptyResultWarning (returns None) when nothing is recorded and
    with AmbiguousResultError (returns the first) when several are.
    """
    request = ProvenanceRequest.build(
        RequestType.FILE_COMMIT_ID,
        clusterNode=writer.cluster_node,
        path=file.path,
        inode=file.inode,
        eventTime=writer.event_time,
    )
    response = await store.query(request, token)
    records = response.records

    if not records:
        warnings.warn(
            EmptyResultWarning(f"No commit id for {file.path} written by pid {writer.pid}"),
            stacklevel=2,
        )
        return None
    if len(records) > 1:
        warnings.warn(
            AmbiguousResultError(
                f"Found {len(records)} commit ids for {file.path} written by pid "
                f"{writer.pid}, taking the first one"
            ),
            stacklevel=2,
        )
    return coerce_str(records[0].get("commit_id"))


@dataclass
class ReproductionPlan:
    """How to rebuild a file: the scheduler workflows, or the process steps."""

    file: FileIdentity
    workflows: list[SchedulerWorkflow] = field(default_factory=list)
    steps: list[ProcessNode] = field(default_factory=list)

    @property
    def from_scheduler(self) -> bool:
        return bool(self.workflows)


async def reproduction_plan(
    store: EventStore,
    path: str,
    inode: int,
    config: TraversalConfig | None = None,
    console: Console | None = None,
    token: CancellationToken | None = None,
) -> ReproductionPlan:
    """Workflows that produced the file, else its processes ordered by start."""
    plan = ReproductionPlan(file=FileIdentity(path=path, inode=inode))

    plan.workflows = await workflows_for_output_file(store, path, inode, token)
    if plan.workflows:
        return plan

    workflow = await build_file_workflow(
        store, path, inode, config=config, console=console, token=token
    )
    plan.steps = workflow.processes_by_birth()
    return plan
