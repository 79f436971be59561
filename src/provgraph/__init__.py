"""🕸️ provgraph - Causal lineage of files and processes.

Quick Start:
    import asyncio
    from provgraph import DuckDBEventStore, build_file_workflow

    store = DuckDBEventStore("events.duckdb")
    workflow = asyncio.run(build_file_workflow(store, "/data/out.csv", 42))
    workflow.processes   # every process that led to the file
    workflow.inputs      # every file they (transitively) read

Comparing runs:
    from provgraph import compare_workflows

    diff = compare_workflows(w1, w2)
    diff.inputs_in_w1, diff.inputs_in_w2, diff.shared_inputs
"""

__version__ = "0.1.0"

from .config import Settings, TraversalConfig, TraversalOptions, get_settings, load_config
from .core import FileIdentity, FileNode, InteractionDescriptor, ProcessIdentity, ProcessNode
from .errors import (
    AmbiguousResultError,
    EmptyResultWarning,
    ProvenanceError,
    QueryError,
    TraversalCancelledError,
    ValidationError,
)
from .lineage import (
    FrontierScheduler,
    Workflow,
    WorkflowComparison,
    build_file_workflow,
    build_process_workflow,
    build_workflow,
    compare_workflows,
    expand_node,
    fill_workflow_outputs,
)
from .query import (
    CancellationToken,
    DuckDBEventStore,
    ProvenanceRequest,
    RequestType,
    RestEventStore,
)

__all__ = [
    "__version__",
    # Config
    "Settings",
    "get_settings",
    "TraversalConfig",
    "TraversalOptions",
    "load_config",
    # Model
    "ProcessIdentity",
    "FileIdentity",
    "ProcessNode",
    "FileNode",
    "InteractionDescriptor",
    # Errors
    "ProvenanceError",
    "ValidationError",
    "QueryError",
    "TraversalCancelledError",
    "AmbiguousResultError",
    "EmptyResultWarning",
    # Stores
    "DuckDBEventStore",
    "RestEventStore",
    "ProvenanceRequest",
    "RequestType",
    "CancellationToken",
    # Lineage
    "FrontierScheduler",
    "Workflow",
    "WorkflowComparison",
    "build_workflow",
    "build_file_workflow",
    "build_process_workflow",
    "fill_workflow_outputs",
    "compare_workflows",
    "expand_node",
]
