"""🧪 Tests for the console and JSON reporters."""

import io
import json

from conftest import at
from rich.console import Console

from provgraph.core.identity import FileIdentity, FileNode, ProcessNode
from provgraph.lineage.jobs import ReproductionPlan, SchedulerWorkflow
from provgraph.lineage.workflow import Workflow, compare_workflows
from provgraph.reporters import ConsoleReporter, JSONReporter


def make_workflow():
    return Workflow(
        id=100,
        name="python make_report.py",
        start_time=at("10:00:00.000"),
        inputs=[FileNode("/data/in.csv", 7, version="v-in")],
        processes=[ProcessNode("node-1", 100, at("10:00:00.000"), exec_cmd_line="make")],
    )


def console_output(report):
    buffer = io.StringIO()
    reporter = ConsoleReporter(console=Console(file=buffer, width=200), verbose=True)
    report(reporter)
    return buffer.getvalue()


def json_output(report):
    buffer = io.StringIO()
    report(JSONReporter(output=buffer))
    return json.loads(buffer.getvalue())


class TestConsoleReporter:
    """Tests for ConsoleReporter."""

    def test_workflow(self):
        """Test that processes and inputs are listed."""
        out = console_output(lambda r: r.report_workflow(make_workflow()))
        assert "/data/in.csv" in out
        assert "node-1" in out
        assert "Inputs" in out

    def test_comparison(self):
        """Test that version conflicts are flagged."""
        w1 = Workflow(inputs=[FileNode("/a", 1, version="v1")])
        w2 = Workflow(inputs=[FileNode("/a", 1, version="v2")])
        out = console_output(lambda r: r.report_comparison(compare_workflows(w1, w2)))
        assert "version differs" in out
        assert "1 input(s) only in W1" in out

    def test_reproduction_without_steps(self):
        """Test a file nobody produced."""
        plan = ReproductionPlan(file=FileIdentity("/a", 1))
        out = console_output(lambda r: r.report_reproduction(plan))
        assert "No producing process found" in out


class TestJSONReporter:
    """Tests for JSONReporter."""

    def test_workflow(self):
        """Test that timestamps are serialized."""
        document = json_output(lambda r: r.report_workflow(make_workflow()))
        process = document["workflow"]["processes"][0]
        assert process["birth_time"].startswith("2024-05-01T10:00:00")
        assert document["workflow"]["inputs"][0]["version"] == "v-in"

    def test_scheduler_workflows(self):
        """Test scheduler workflow listing."""
        workflows = [SchedulerWorkflow(id=1, name="nightly", start_time=at("09:00:00.000"))]
        document = json_output(lambda r: r.report_scheduler_workflows(workflows))
        assert document["workflows"][0]["name"] == "nightly"

    def test_files(self):
        """Test a titled file list."""
        document = json_output(lambda r: r.report_files([FileNode("/out", 2)], "Outputs"))
        assert document == {
            "title": "Outputs",
            "files": [FileNode("/out", 2).to_dict()],
        }
