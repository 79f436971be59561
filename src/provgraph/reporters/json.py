"""JSON reporter for lineage results.

Outputs structured JSON for scripting and downstream tooling.
"""

from __future__ import annotations

import json
import sys
from dataclasses import asdict
from datetime import datetime
from typing import Any, TextIO

from ..core.identity import FileNode
from ..lineage.explore import Expansion
from ..lineage.jobs import ReproductionPlan, SchedulerWorkflow
from ..lineage.workflow import Workflow, WorkflowComparison


def _default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


class JSONReporter:
    """Write lineage results as JSON documents."""

    def __init__(self, output: TextIO | None = None, pretty: bool = False) -> None:
        """Initialize the JSON reporter.

        Args:
            output: File to write to (default: stdout)
            pretty: Pretty-print JSON with indentation
        """
        self.output = output or sys.stdout
        self.pretty = pretty

    def report_workflow(self, workflow: Workflow) -> None:
        self._write({"workflow": workflow.to_dict()})

    def report_comparison(self, comparison: WorkflowComparison) -> None:
        self._write({"comparison": comparison.to_dict()})

    def report_expansion(self, expansion: Expansion) -> None:
        self._write({"expansion": expansion.to_dict()})

    def report_scheduler_workflows(self, workflows: list[SchedulerWorkflow]) -> None:
        self._write({"workflows": [asdict(w) for w in workflows]})

    def report_reproduction(self, plan: ReproductionPlan) -> None:
        self._write(
            {
                "file": {"path": plan.file.path, "inode": plan.file.inode},
                "workflows": [asdict(w) for w in plan.workflows],
                "steps": [step.to_dict() for step in plan.steps],
            }
        )

    def report_files(self, files: list[FileNode], title: str) -> None:
        self._write({"title": title, "files": [f.to_dict() for f in files]})

    def _write(self, report: dict[str, Any]) -> None:
        indent = 2 if self.pretty else None
        json.dump(report, self.output, indent=indent, default=_default)
        self.output.write("\n")
