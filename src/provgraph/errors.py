"""🚨 Provenance Errors - What can go wrong while tracing lineage.

- ValidationError: a request is malformed (rejected before any store access)
- QueryError: the event store failed (aborts the running traversal)
- TraversalCancelledError: deadline exceeded or cancelled by the caller
- AmbiguousResultError: more candidates than expected (warning, first one wins)
- EmptyResultWarning: nothing found for a lookup (not an error)
"""

from __future__ import annotations


class ProvenanceError(Exception):
    """Base exception for provenance operations."""

    pass


class ValidationError(ProvenanceError, ValueError):
    """Request is missing parameters or has invalid ones."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class QueryError(ProvenanceError):
    """The event store could not answer a request."""

    def __init__(self, message: str, request_type: str | None = None):
        super().__init__(message)
        self.request_type = request_type


class TraversalCancelledError(QueryError):
    """The traversal ran past its deadline or was cancelled."""

    pass


class AmbiguousResultError(ProvenanceError, UserWarning):
    """More than one candidate where exactly one was expected."""

    pass


class EmptyResultWarning(UserWarning):
    """A lookup returned no records."""

    pass
