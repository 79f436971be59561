"""✅ Visited Set - One entry per node identity.

Insertion is idempotent: a re-discovered identity is dropped and its stored
attributes are kept. The only later update is the file-version resolution
done after a file's producers are known.

A process known without its death time (a running process, or a seed given
by node, pid and birth only) matches the same process recorded with one.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime

from ..core.identity import FileIdentity, Node, NodeIdentity, ProcessIdentity

LifetimeKey = tuple[str, int, datetime]


class VisitedSet:
    """Identity-keyed memo of expanded nodes (insertion-ordered)."""

    def __init__(self):
        self._nodes: dict[NodeIdentity, Node] = {}
        self._by_lifetime: dict[LifetimeKey, ProcessIdentity] = {}

    def add(self, node: Node) -> bool:
        """Add a node. Returns False if its identity was already visited."""
        identity = node.identity
        if self._resolve(identity) is not None:
            return False
        self._nodes[identity] = node
        if isinstance(identity, ProcessIdentity):
            self._by_lifetime.setdefault(_lifetime_key(identity), identity)
        return True

    def get(self, identity: NodeIdentity) -> Node | None:
        stored = self._resolve(identity)
        return self._nodes[stored] if stored is not None else None

    def _resolve(self, identity: object) -> NodeIdentity | None:
        """The stored identity matching `identity`, if any."""
        if identity in self._nodes:
            return identity
        if not isinstance(identity, ProcessIdentity):
            return None
        stored = self._by_lifetime.get(_lifetime_key(identity))
        # An unknown death time matches any recorded one
        if stored is not None and (stored.death_time is None or identity.death_time is None):
            return stored
        return None

    def resolve_version(
        self,
        identity: FileIdentity,
        candidates: list[tuple[datetime | None, str | None]],
    ) -> str | None:
        """Set a file's version from its producers: the latest event wins.

        Args:
            identity: Visited file
            candidates: (event_time, version) pairs in discovery order

        Returns:
            The resolved version (None when there were no candidates)
        """
        node = self.get(identity)
        latest_time: datetime | None = None
        latest_version: str | None = None
        for event_time, version in candidates:
            if event_time is None:
                continue
            # Strict: on equal times the first discovered record is kept
            if latest_time is None or event_time > latest_time:
                latest_time = event_time
                latest_version = version
        if latest_time is not None:
            node.version = latest_version
        return node.version

    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    def __contains__(self, identity: object) -> bool:
        return self._resolve(identity) is not None

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)


def _lifetime_key(identity: ProcessIdentity) -> LifetimeKey:
    return identity.cluster_node, identity.pid, identity.birth_time
