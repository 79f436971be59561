"""🧪 Tests for the frontier heap and the visited set."""

import pytest
from conftest import at

from provgraph.core.identity import FileIdentity, FileNode, ProcessNode
from provgraph.lineage.frontier import Frontier, FrontierEntry
from provgraph.lineage.visited import VisitedSet


def entry(path, clock):
    return FrontierEntry(node=FileNode(path, 1), constraint_time=at(clock))


class TestFrontier:
    """Tests for Frontier."""

    def test_latest_constraint_first(self):
        """Test that pop returns the latest constraint time."""
        frontier = Frontier()
        frontier.push(entry("/a", "10:00:01.000"))
        frontier.push(entry("/b", "10:00:03.000"))
        frontier.push(entry("/c", "10:00:02.000"))

        assert frontier.pop().node.path == "/b"
        assert len(frontier) == 2

    def test_ties_keep_insertion_order(self):
        """Test that equal constraint times pop in push order."""
        frontier = Frontier()
        for path in ("/a", "/b", "/c"):
            frontier.push(entry(path, "10:00:00.000"))

        assert [e.node.path for e in frontier.drain()] == ["/a", "/b", "/c"]

    def test_drain_empties(self):
        """Test that drain takes every entry."""
        frontier = Frontier()
        frontier.push(entry("/a", "10:00:00.000"))
        assert len(frontier.drain()) == 1
        assert not frontier

    def test_pop_empty(self):
        """Test popping an empty frontier."""
        with pytest.raises(IndexError):
            Frontier().pop()

    def test_microsecond_resolution(self):
        """Test ordering of constraint times one microsecond apart."""
        frontier = Frontier()
        early = FrontierEntry(FileNode("/a", 1), at("10:00:00.000001"))
        late = FrontierEntry(FileNode("/b", 1), at("10:00:00.000002"))
        frontier.push(early)
        frontier.push(late)
        assert frontier.pop() is late


class TestVisitedSet:
    """Tests for VisitedSet."""

    def test_add_is_idempotent(self):
        """Test that a second node with the same identity is dropped."""
        visited = VisitedSet()
        assert visited.add(FileNode("/a", 1, version="v1"))
        assert not visited.add(FileNode("/a", 1, version="v2"))

        assert len(visited) == 1
        assert visited.get(FileIdentity("/a", 1)).version == "v1"

    def test_membership_by_identity(self):
        """Test lookups by identity."""
        visited = VisitedSet()
        process = ProcessNode("node-1", 100, at("10:00:00.000"))
        visited.add(process)
        assert process.identity in visited
        assert FileIdentity("/a", 1) not in visited

    def test_unknown_death_time_matches_recorded_one(self):
        """Test that a process seeded without death time is the same as its full record."""
        visited = VisitedSet()
        seed = ProcessNode("node-1", 100, at("10:00:00.000"))
        recorded = ProcessNode("node-1", 100, at("10:00:00.000"), at("10:00:05.000"))

        assert visited.add(seed)
        assert not visited.add(recorded)
        assert recorded.identity in visited
        assert len(visited) == 1

    def test_other_death_times_stay_distinct(self):
        """Test that two known death times are two processes (pid reuse)."""
        visited = VisitedSet()
        visited.add(ProcessNode("node-1", 100, at("10:00:00.000"), at("10:00:05.000")))
        assert visited.add(ProcessNode("node-1", 100, at("10:00:00.000"), at("10:00:09.000")))

    def test_latest_producer_version_wins(self):
        """Test that the later of two producer records sets the version."""
        visited = VisitedSet()
        visited.add(FileNode("/data/out.csv", 42))

        version = visited.resolve_version(
            FileIdentity("/data/out.csv", 42),
            [(at("10:00:02.000"), "v2"), (at("10:00:01.000"), "v1")],
        )

        assert version == "v2"
        assert visited.get(FileIdentity("/data/out.csv", 42)).version == "v2"

    def test_equal_times_keep_first(self):
        """Test that ties keep the first discovered record."""
        visited = VisitedSet()
        visited.add(FileNode("/a", 1))
        version = visited.resolve_version(
            FileIdentity("/a", 1),
            [(at("10:00:01.000"), "first"), (at("10:00:01.000"), "second")],
        )
        assert version == "first"

    def test_no_candidates_keeps_version(self):
        """Test that resolution without candidates leaves the version alone."""
        visited = VisitedSet()
        visited.add(FileNode("/a", 1, version="v0"))
        assert visited.resolve_version(FileIdentity("/a", 1), [(None, "x")]) == "v0"

    def test_iteration_order(self):
        """Test that nodes come back in insertion order."""
        visited = VisitedSet()
        for path in ("/b", "/a"):
            visited.add(FileNode(path, 1))
        assert [n.path for n in visited] == ["/b", "/a"]
