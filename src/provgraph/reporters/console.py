"""Rich console reporter for lineage results."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..core.identity import FileNode, ProcessNode
from ..core.timeutil import format_timestamp
from ..lineage.explore import Cardinal, Expansion
from ..lineage.jobs import ReproductionPlan, SchedulerWorkflow
from ..lineage.workflow import InputDiff, Workflow, WorkflowComparison


class ConsoleReporter:
    """Render workflows, comparisons and expansions as rich tables."""

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self.console = console or Console()
        self.verbose = verbose

    def report_workflow(self, workflow: Workflow, title: str | None = None) -> None:
        """Summary panel, then the processes in birth order and the inputs."""
        name = title or workflow.name or "Workflow"
        self.console.print(
            Panel(
                f"[bold]Processes:[/bold] {len(workflow.processes)}\n"
                f"[bold]Inputs:[/bold] {len(workflow.inputs)}\n"
                f"[bold]Outputs:[/bold] {len(workflow.outputs)}\n"
                f"[dim]Start:[/dim] {format_timestamp(workflow.start_time)}  "
                f"[dim]End:[/dim] {format_timestamp(workflow.end_time)}",
                title=f"🧬 {name}",
                border_style="cyan",
            )
        )
        self.console.print(self._process_table(workflow.processes_by_birth()))
        if workflow.inputs:
            self.console.print(self._file_table(workflow.inputs, "📥 Inputs"))
        if workflow.outputs:
            self.console.print(self._file_table(workflow.outputs, "📤 Outputs"))

    def report_comparison(self, comparison: WorkflowComparison) -> None:
        """Inputs unique to each side (with version conflicts) and shared inputs."""
        table = Table(title="🔀 Input comparison", show_header=True, header_style="bold cyan")
        table.add_column("Side")
        table.add_column("Path")
        table.add_column("Inode", justify="right")
        table.add_column("Version")
        table.add_column("Conflict")

        def add(side: str, diff: InputDiff) -> None:
            conflict = "[yellow]version differs[/yellow]" if diff.version_diff else ""
            table.add_row(
                side, diff.file.path, str(diff.file.inode), diff.file.version or "", conflict
            )

        for diff in comparison.inputs_in_w1:
            add("[red]W1 only[/red]", diff)
        for diff in comparison.inputs_in_w2:
            add("[green]W2 only[/green]", diff)
        for f in comparison.shared_inputs:
            table.add_row("[dim]shared[/dim]", f.path, str(f.inode), f.version or "", "")

        self.console.print(table)

        if comparison.identical_inputs:
            self.console.print("[green]✓[/green] Both workflows read the same inputs")
        else:
            self.console.print(
                f"[yellow]⚠️[/yellow] {len(comparison.inputs_in_w1)} input(s) only in W1, "
                f"{len(comparison.inputs_in_w2)} only in W2"
            )

        if self.verbose:
            self.console.print(self._file_table(comparison.outputs_in_w1, "📤 W1 outputs"))
            self.console.print(self._file_table(comparison.outputs_in_w2, "📤 W2 outputs"))

    def report_expansion(self, expansion: Expansion) -> None:
        """Neighbors of one node, west (inputs) then east (outputs)."""
        table = Table(
            title=f"🔭 {expansion.anchor.label}", show_header=True, header_style="bold cyan"
        )
        table.add_column("Side")
        table.add_column("Node")
        table.add_column("Interaction")
        table.add_column("Source", style="dim")

        for side in (Cardinal.WEST, Cardinal.EAST):
            for placed in expansion.side(side):
                arrow = "←" if side == Cardinal.WEST else "→"
                if placed.bidirectional:
                    arrow = "⇄"
                table.add_row(
                    f"{arrow} {side.value}",
                    placed.node.label,
                    placed.descriptor.to_string(),
                    placed.source.value,
                )

        self.console.print(table)
        if expansion.duplicates or expansion.filtered:
            self.console.print(
                f"[dim]{expansion.duplicates} duplicate(s) discarded, "
                f"{expansion.filtered} filtered[/dim]"
            )

    def report_scheduler_workflows(self, workflows: list[SchedulerWorkflow]) -> None:
        table = Table(
            title="🗂️ Scheduler workflows", show_header=True, header_style="bold cyan"
        )
        table.add_column("ID", justify="right")
        table.add_column("Name")
        table.add_column("Start")
        table.add_column("End")

        for w in workflows:
            table.add_row(
                str(w.id),
                w.name or "",
                format_timestamp(w.start_time),
                format_timestamp(w.end_time),
            )
        self.console.print(table)

    def report_reproduction(self, plan: ReproductionPlan) -> None:
        """How to rebuild a file."""
        self.console.print(
            f"[bold]♻️ Reproducing {plan.file.path}[/bold] (inode {plan.file.inode})"
        )
        if plan.from_scheduler:
            self.console.print("Produced by scheduler workflow(s):")
            self.report_scheduler_workflows(plan.workflows)
            return

        if not plan.steps:
            self.console.print("[yellow]No producing process found[/yellow]")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Command")
        table.add_column("Cwd")
        table.add_column("Node")
        for i, step in enumerate(plan.steps, start=1):
            table.add_row(str(i), step.exec_cmd_line, step.exec_cwd or "", step.cluster_node)
        self.console.print(table)

    def report_files(self, files: list[FileNode], title: str) -> None:
        self.console.print(self._file_table(files, title))

    def _process_table(self, processes: list[ProcessNode]) -> Table:
        table = Table(title="⚙️ Processes", show_header=True, header_style="bold cyan")
        table.add_column("Node")
        table.add_column("PID", justify="right")
        table.add_column("Command")
        table.add_column("Birth")
        table.add_column("Death")
        if self.verbose:
            table.add_column("Cwd")

        for p in processes:
            row = [
                p.cluster_node,
                str(p.pid),
                p.exec_cmd_line,
                format_timestamp(p.birth_time),
                format_timestamp(p.death_time),
            ]
            if self.verbose:
                row.append(p.exec_cwd or "")
            table.add_row(*row)
        return table

    def _file_table(self, files: list[FileNode], title: str) -> Table:
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Path")
        table.add_column("Inode", justify="right")
        table.add_column("Version")

        for f in files:
            table.add_row(f.path, str(f.inode), f.version or "")
        return table
