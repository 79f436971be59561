"""🧪 Tests for workflow building and comparison."""

import asyncio

import pytest
from conftest import ScriptedStore, at

from provgraph.config import RetryConfig, TraversalConfig
from provgraph.core.identity import FileIdentity, FileNode, ProcessNode
from provgraph.errors import AmbiguousResultError, TraversalCancelledError, ValidationError
from provgraph.lineage.workflow import (
    InputDiff,
    Workflow,
    build_file_workflow,
    build_process_workflow,
    build_workflow,
    compare_workflows,
    fill_workflow_outputs,
)
from provgraph.query.contract import CancellationToken, RequestType


def fs_event(path, inode, clock, pid=100, read=0, written=0):
    return {
        "node_name": "node-1",
        "pid": pid,
        "event": "CLOSE",
        "event_time": at(clock),
        "path": path,
        "inode": inode,
        "bytes_read": read,
        "bytes_written": written,
    }


class TestScenarioA:
    """Lineage of /data/out.csv against a real DuckDB store."""

    def test_file_workflow(self, scenario_store, quiet_console):
        """Test processes = [P1] and inputs = [in.csv]."""
        workflow = asyncio.run(
            build_file_workflow(scenario_store, "/data/out.csv", 42, console=quiet_console)
        )

        assert [p.pid for p in workflow.processes] == [100]
        assert [f.identity for f in workflow.inputs] == [FileIdentity("/data/in.csv", 7)]
        assert workflow.processes[0].exec_cmd_line == "python make_report.py"

    def test_seed_version_resolved(self, scenario_store, quiet_console):
        """Test that inputs carry the version their reader saw."""
        workflow = asyncio.run(
            build_file_workflow(scenario_store, "/data/out.csv", 42, console=quiet_console)
        )
        assert workflow.inputs[0].version == "v-in"

    def test_process_workflow_with_outputs(self, scenario_store, quiet_console):
        """Test a process-seeded workflow and its outputs."""

        async def build():
            workflow = await build_process_workflow(
                scenario_store,
                "node-1",
                100,
                at("10:00:00.000"),
                at("10:00:05.000"),
                cmd_line="python make_report.py",
                console=quiet_console,
            )
            return await fill_workflow_outputs(scenario_store, workflow)

        workflow = asyncio.run(build())

        assert workflow.id == 100
        assert workflow.cluster_node == "node-1"
        assert workflow.name == "python make_report.py"
        assert [f.path for f in workflow.inputs] == ["/data/in.csv"]
        assert [f.path for f in workflow.outputs] == ["/data/out.csv"]

    def test_skew_tolerated(self, scenario_store, quiet_console):
        """Test that a read stamped just before the process birth is still found."""
        scenario_store.load_records(
            "fs_events",
            [
                {
                    "node_name": "node-1",
                    "pid": 100,
                    "event": "CLOSE",
                    "event_time": at("09:59:59.700"),
                    "path": "/data/config.yaml",
                    "inode": 3,
                    "bytes_read": 100,
                    "bytes_written": 0,
                }
            ],
        )
        workflow = asyncio.run(
            build_file_workflow(scenario_store, "/data/out.csv", 42, console=quiet_console)
        )
        assert {f.path for f in workflow.inputs} == {"/data/in.csv", "/data/config.yaml"}

    def test_sequential_traversal(self, scenario_store, quiet_console):
        """Test that a concurrency cap of one reaches the same lineage."""
        workflow = asyncio.run(
            build_file_workflow(
                scenario_store,
                "/data/out.csv",
                42,
                config=TraversalConfig(max_concurrency=1),
                console=quiet_console,
            )
        )
        assert len(workflow.processes) == 1


class TestTraversalSettings:
    """The traversal's skew tolerance and retry policy reach every query."""

    def test_retry_from_config(self, quiet_console):
        """Test that a transient store failure is retried by the traversal config."""
        store = ScriptedStore(failures={RequestType.FILE_BY_INODE: 1})
        config = TraversalConfig(retry=RetryConfig(attempts=3, backoff_seconds=0))

        workflow = asyncio.run(
            build_file_workflow(store, "/data/out.csv", 42, config=config, console=quiet_console)
        )

        assert workflow.processes == []
        assert len(store.calls_of(RequestType.FILE_BY_INODE)) == 2

    def test_requests_carry_epsilon(self, quiet_console):
        """Test that every neighbor request uses the configured tolerance."""
        store = ScriptedStore()
        config = TraversalConfig(epsilon_ms=0)

        asyncio.run(
            build_file_workflow(store, "/data/out.csv", 42, config=config, console=quiet_console)
        )

        assert store.calls
        assert {c.epsilon_ms for c in store.calls} == {0}

    @pytest.mark.parametrize("epsilon_ms, found", [(500, True), (0, False)])
    def test_epsilon_bounds_late_reads(self, scenario_store, quiet_console, epsilon_ms, found):
        """Test a read 300 ms after the process death, inside and outside the tolerance."""
        scenario_store.load_records(
            "fs_events", [fs_event("/data/late.csv", 9, "10:00:05.300", read=10)]
        )

        workflow = asyncio.run(
            build_process_workflow(
                scenario_store,
                "node-1",
                100,
                at("10:00:00.000"),
                at("10:00:05.000"),
                config=TraversalConfig(epsilon_ms=epsilon_ms),
                console=quiet_console,
            )
        )

        assert ("/data/late.csv" in {f.path for f in workflow.inputs}) is found


class TestProcessSeed:
    """Process seeds given without their death time."""

    def test_read_back_own_output(self, scenario_store, quiet_console):
        """Test that the seed is not listed twice when the store returns its death time."""
        scenario_store.load_records(
            "fs_events", [fs_event("/data/out.csv", 42, "10:00:04.000", read=2048)]
        )
        seed = ProcessNode("node-1", 100, at("10:00:00.000"))

        workflow = asyncio.run(build_workflow(scenario_store, seed, console=quiet_console))

        assert [p.pid for p in workflow.processes] == [100]
        assert "/data/in.csv" in {f.path for f in workflow.inputs}


class TestIdempotence:
    """Building the same workflow twice gives the same result."""

    def test_cyclic_log(self, scenario_store, quiet_console):
        """Test a log where pid 200 reads the seed file and writes its input."""
        scenario_store.load_records(
            "process_events",
            [
                {
                    "node_name": "node-1",
                    "pid": 200,
                    "ppid": 1,
                    "pgid": 200,
                    "birth_time": at("09:59:00.000"),
                    "death_time": at("10:00:10.000"),
                    "exec_cmd_line": "python prepare.py",
                    "exec_cwd": "/data",
                }
            ],
        )
        scenario_store.load_records(
            "fs_events",
            [
                fs_event("/data/raw.csv", 11, "10:00:00.100", pid=200, read=64),
                fs_event("/data/out.csv", 42, "10:00:00.200", pid=200, read=64),
                fs_event("/data/in.csv", 7, "10:00:00.500", pid=200, written=1024),
            ],
        )

        async def build():
            return await build_file_workflow(
                scenario_store, "/data/out.csv", 42, console=quiet_console
            )

        first = asyncio.run(build())
        second = asyncio.run(build())

        assert {p.pid for p in first.processes} == {100, 200}
        assert "/data/raw.csv" in {f.path for f in first.inputs}
        assert {f.identity for f in first.inputs} == {f.identity for f in second.inputs}
        assert {p.identity for p in first.processes} == {p.identity for p in second.processes}


class TestPathOnlySeed:
    """File seeds given by path, without inode."""

    def test_inode_resolved_by_path(self, scenario_store, quiet_console):
        """Test that /data/out.csv without inode traces like inode 42."""
        workflow = asyncio.run(
            build_workflow(scenario_store, FileNode("/data/out.csv", -1), console=quiet_console)
        )

        assert workflow.seed == FileIdentity("/data/out.csv", 42)
        assert [f.identity for f in workflow.inputs] == [FileIdentity("/data/in.csv", 7)]
        assert [p.pid for p in workflow.processes] == [100]

    def test_unknown_path_rejected(self, scenario_store, quiet_console):
        """Test that a path without events is not traced as an empty workflow."""
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(
                build_workflow(
                    scenario_store, FileNode("/data/nope.csv", -1), console=quiet_console
                )
            )
        assert exc_info.value.missing == ["inode"]

    def test_several_inodes_warn(self, scenario_store, quiet_console):
        """Test that the inode with the latest event is chosen, with a warning."""
        scenario_store.load_records(
            "fs_events", [fs_event("/data/out.csv", 43, "10:00:04.000", written=10)]
        )

        with pytest.warns(AmbiguousResultError):
            workflow = asyncio.run(
                build_workflow(scenario_store, FileNode("/data/out.csv", -1), console=quiet_console)
            )

        assert workflow.seed == FileIdentity("/data/out.csv", 43)


class TestOutputs:
    """Tests for fill_workflow_outputs."""

    def test_outputs_deduplicated(self):
        """Test that repeated writes of one file are listed once."""
        record = {"path": "/out", "inode": 1, "event": "CLOSE", "bytes_written": 5}
        store = ScriptedStore(
            handlers={RequestType.PROCESS_FS_ACCESSES: lambda p: [record, dict(record)]}
        )
        workflow = Workflow(
            id=100, start_time=at("10:00:00.000"), end_time=None, cluster_node="node-1"
        )

        asyncio.run(fill_workflow_outputs(store, workflow))

        assert len(workflow.outputs) == 1
        request = store.calls[0]
        assert request.params["direction"].value == "write"
        assert request.params["deathTime"].year == 2100


class TestCancellation:
    """Tests for cancelled builds."""

    def test_cancelled_build_raises(self, scenario_store, quiet_console):
        """Test that no partial workflow is returned."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(TraversalCancelledError):
            asyncio.run(
                build_file_workflow(
                    scenario_store, "/data/out.csv", 42, console=quiet_console, token=token
                )
            )


class TestCompareWorkflows:
    """Tests for compare_workflows."""

    def test_version_conflict_is_not_shared(self):
        """Test that the same file at another version is unique on both sides."""
        w1 = Workflow(inputs=[FileNode("a", 1, version="v1")])
        w2 = Workflow(inputs=[FileNode("a", 1, version="v2")])

        comparison = compare_workflows(w1, w2)

        assert comparison.shared_inputs == []
        assert comparison.inputs_in_w1 == [InputDiff(FileNode("a", 1, version="v1"), True)]
        assert comparison.inputs_in_w2 == [InputDiff(FileNode("a", 1, version="v2"), True)]

    def test_shared_and_unique(self):
        """Test the partition of inputs."""
        w1 = Workflow(
            inputs=[FileNode("a", 1, version="v1"), FileNode("b", 2)],
            outputs=[FileNode("out1", 10)],
        )
        w2 = Workflow(
            inputs=[FileNode("a", 1, version="v1"), FileNode("c", 3)],
            outputs=[FileNode("out2", 11)],
        )

        comparison = compare_workflows(w1, w2)

        assert [f.path for f in comparison.shared_inputs] == ["a"]
        assert [(d.file.path, d.version_diff) for d in comparison.inputs_in_w1] == [("b", False)]
        assert [(d.file.path, d.version_diff) for d in comparison.inputs_in_w2] == [("c", False)]
        assert [f.path for f in comparison.outputs_in_w1] == ["out1"]
        assert [f.path for f in comparison.outputs_in_w2] == ["out2"]
        assert not comparison.identical_inputs

    def test_same_path_other_inode(self):
        """Test that another inode is another file, not a version conflict."""
        comparison = compare_workflows(
            Workflow(inputs=[FileNode("a", 1)]), Workflow(inputs=[FileNode("a", 2)])
        )
        assert comparison.inputs_in_w1[0].version_diff is False

    def test_identical(self):
        """Test comparing a workflow with itself."""
        w = Workflow(inputs=[FileNode("a", 1, version="v1")])
        comparison = compare_workflows(w, w)
        assert comparison.identical_inputs
        assert comparison.to_dict()["shared_inputs"][0]["path"] == "a"
