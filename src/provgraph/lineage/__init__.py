"""🧬 Lineage - Rebuild and browse the causal history of files and processes.

- FrontierScheduler: phase-by-phase backward traversal from one seed
- Workflow builders and comparison
- Scheduler-tracked workflows, logs and commit ids
- expand_node: one-hop interactive expansion with placement
"""

from .explore import Cardinal, Expansion, NodeFilter, PlacedNode, expand_node
from .frontier import Frontier, FrontierEntry
from .jobs import (
    JobProcess,
    LogEntry,
    ReproductionPlan,
    SchedulerWorkflow,
    file_commit_id,
    find_processes,
    job_processes,
    list_workflows,
    process_logs,
    reproduction_plan,
    workflow_output_files,
    workflows_for_output_file,
)
from .scheduler import FrontierScheduler, TraversalResult, TraversalState
from .visited import VisitedSet
from .workflow import (
    InputDiff,
    Workflow,
    WorkflowComparison,
    build_file_workflow,
    build_process_workflow,
    build_workflow,
    compare_workflows,
    fill_workflow_outputs,
)

__all__ = [
    # Traversal
    "Frontier",
    "FrontierEntry",
    "VisitedSet",
    "FrontierScheduler",
    "TraversalResult",
    "TraversalState",
    # Workflows
    "Workflow",
    "InputDiff",
    "WorkflowComparison",
    "build_workflow",
    "build_process_workflow",
    "build_file_workflow",
    "fill_workflow_outputs",
    "compare_workflows",
    # Scheduler jobs
    "SchedulerWorkflow",
    "JobProcess",
    "LogEntry",
    "ReproductionPlan",
    "list_workflows",
    "workflow_output_files",
    "workflows_for_output_file",
    "job_processes",
    "find_processes",
    "process_logs",
    "file_commit_id",
    "reproduction_plan",
    # Exploration
    "Cardinal",
    "NodeFilter",
    "PlacedNode",
    "Expansion",
    "expand_node",
]
