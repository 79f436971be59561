"""🧩 Core Model - Node identities and fuzzy time.

Everything the traversal needs to reason about nodes:
- ProcessIdentity / FileIdentity and their resolved nodes
- InteractionDescriptor facets (read, write, observed, deleted, renamed)
- Bounded-skew time comparisons
"""

from .identity import (
    FileIdentity,
    FileNode,
    InteractionDescriptor,
    Node,
    NodeIdentity,
    NodeKind,
    ProcessIdentity,
    ProcessNode,
    file_node_from_record,
    process_node_from_record,
)
from .timeutil import (
    DEFAULT_EPSILON_MS,
    FAR_FUTURE,
    format_timestamp,
    fuzzy_before,
    fuzzy_equals,
    parse_timestamp,
)

__all__ = [
    # Identity
    "NodeKind",
    "ProcessIdentity",
    "FileIdentity",
    "NodeIdentity",
    "InteractionDescriptor",
    "ProcessNode",
    "FileNode",
    "Node",
    "process_node_from_record",
    "file_node_from_record",
    # Time
    "DEFAULT_EPSILON_MS",
    "FAR_FUTURE",
    "fuzzy_before",
    "fuzzy_equals",
    "parse_timestamp",
    "format_timestamp",
]
