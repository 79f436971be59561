"""📨 Provenance Query Contract - What the traversal asks of an event store.

Every store speaks the same request/response shape:

    request  = {"requestType": "PROCESS_FS_ACCESSES",
                "params": {"clusterNode": "n1", "pid": 42, ...}}
    response = {"records": [{"path": ..., "inode": ..., ...}, ...]}

Requests are validated against the request-type table before any store is
touched. Stores implement `_execute`; `EventStore.query` wraps it with
validation, a bounded retry policy and deadline handling.
"""

from __future__ import annotations

import asyncio
import math
import numbers
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

import pandas as pd
from pydantic import BeforeValidator, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console

from ..core.timeutil import DEFAULT_EPSILON_MS, format_timestamp, parse_timestamp
from ..errors import QueryError, TraversalCancelledError, ValidationError


class RequestType(str, Enum):
    """Requests understood by every event store."""

    FILE_BY_PATH = "FILE_BY_PATH"
    FILE_BY_INODE = "FILE_BY_INODE"
    PROCESS_INITIAL = "PROCESS_INITIAL"
    PROCESS_FS_ACCESSES = "PROCESS_FS_ACCESSES"
    PROCESS_IPC = "PROCESS_IPC"
    PROCESS_TRUE_IPC = "PROCESS_TRUE_IPC"
    PROCESS_NET = "PROCESS_NET"
    WORKFLOWS = "WORKFLOWS"
    WORKFLOW_OUTPUT_FILES = "WORKFLOW_OUTPUT_FILES"
    OUTPUT_FILE_WORKFLOW = "OUTPUT_FILE_WORKFLOW"
    PROCESS_LOGS = "PROCESS_LOGS"
    WORKFLOW_PROCESSES = "WORKFLOW_PROCESSES"
    FILE_COMMIT_ID = "FILE_COMMIT_ID"


class Direction(str, Enum):
    """Which causal edge a neighbor query looks for."""

    READ = "read"
    WRITE = "write"
    EITHER = "either"


REQUIRED_PARAMS: dict[RequestType, tuple[str, ...]] = {
    RequestType.FILE_BY_PATH: ("path",),
    RequestType.FILE_BY_INODE: ("inode", "path"),
    RequestType.PROCESS_INITIAL: ("processName",),
    RequestType.PROCESS_FS_ACCESSES: ("clusterNode", "pid", "birthTime", "deathTime"),
    RequestType.PROCESS_IPC: ("clusterNode", "pid", "birthTime", "deathTime", "pgid"),
    RequestType.PROCESS_TRUE_IPC: ("clusterNode", "pid", "birthTime"),
    RequestType.PROCESS_NET: ("clusterNode", "pid", "birthTime", "deathTime", "pgid"),
    RequestType.WORKFLOWS: (),
    RequestType.WORKFLOW_OUTPUT_FILES: ("workflowId", "windowStart", "windowEnd"),
    RequestType.OUTPUT_FILE_WORKFLOW: ("path", "inode"),
    RequestType.PROCESS_LOGS: ("clusterNode", "pid", "ppid", "birthTime", "deathTime"),
    RequestType.WORKFLOW_PROCESSES: ("jobDescription",),
    RequestType.FILE_COMMIT_ID: ("clusterNode", "path", "inode", "eventTime"),
}

# Accepted by the file and FS-access lookups, ignored elsewhere
OPTIONAL_PARAMS: tuple[str, ...] = ("constraintTime", "direction")


def _as_int(value: Any) -> Any:
    if isinstance(value, numbers.Integral) and not isinstance(value, bool):
        return int(value)
    return value


IntParam = Annotated[int, BeforeValidator(_as_int)]
TimestampParam = Annotated[datetime, BeforeValidator(parse_timestamp)]

_INT = TypeAdapter(IntParam)
_TIMESTAMP = TypeAdapter(TimestampParam)
_STR = TypeAdapter(str)
_DIRECTION = TypeAdapter(Direction)

PARAM_TYPES: dict[str, TypeAdapter] = {
    "path": _STR,
    "processName": _STR,
    "clusterNode": _STR,
    "jobDescription": _STR,
    "inode": _INT,
    "pid": _INT,
    "ppid": _INT,
    "pgid": _INT,
    "workflowId": _INT,
    "birthTime": _TIMESTAMP,
    "deathTime": _TIMESTAMP,
    "windowStart": _TIMESTAMP,
    "windowEnd": _TIMESTAMP,
    "eventTime": _TIMESTAMP,
    "constraintTime": _TIMESTAMP,
    "direction": _DIRECTION,
}


def _is_missing(value: Any) -> bool:
    """None and empty strings are missing; 0 and False are values."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


@dataclass(frozen=True)
class ProvenanceRequest:
    """One request against the event store."""

    request_type: RequestType
    params: dict[str, Any] = field(default_factory=dict)

    # Clock-skew tolerance for this request (None = the store's own)
    epsilon_ms: int | None = None

    @classmethod
    def build(cls, request_type: RequestType | str, **params: Any) -> "ProvenanceRequest":
        """Build a request, dropping optional parameters left as None.

        Example:
            ProvenanceRequest.build("FILE_BY_INODE", path="/data/in.csv", inode=7)
        """
        try:
            request_type = RequestType(request_type)
        except ValueError as e:
            raise ValidationError(f"Unknown request type: {request_type!r}") from e
        params = {
            k: v for k, v in params.items() if not (k in OPTIONAL_PARAMS and v is None)
        }
        return cls(request_type=request_type, params=params)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "ProvenanceRequest":
        """Parse a wire body {"requestType": ..., "params": {...}}."""
        if not isinstance(body, dict):
            raise ValidationError("Request body must be an object")
        request_type = body.get("requestType")
        if _is_missing(request_type):
            raise ValidationError("You must provide requestType", missing=["requestType"])
        params = body.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ValidationError("params must be an object")
        request = cls.build(request_type, **params)
        epsilon_ms = body.get("epsilonMs")
        if epsilon_ms is None:
            return request
        try:
            return replace(request, epsilon_ms=int(epsilon_ms))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"epsilonMs must be an integer: {epsilon_ms!r}") from e

    @property
    def required(self) -> tuple[str, ...]:
        return REQUIRED_PARAMS[self.request_type]

    def validate(self) -> "ProvenanceRequest":
        """Check required parameters and coerce every known one to its type.

        Returns:
            A new request with typed params

        Raises:
            ValidationError: Missing or uncoercible parameters
        """
        missing = [name for name in self.required if _is_missing(self.params.get(name))]
        if missing:
            raise ValidationError(
                f"{self.request_type.value}: missing required parameter(s) "
                f"{', '.join(missing)}",
                missing=missing,
            )

        typed: dict[str, Any] = {}
        for name, value in self.params.items():
            adapter = PARAM_TYPES.get(name)
            if adapter is None or value is None:
                typed[name] = value
                continue
            try:
                typed[name] = adapter.validate_python(value)
            except (PydanticValidationError, TypeError, ValueError) as e:
                raise ValidationError(
                    f"{self.request_type.value}: invalid value for {name}: {value!r}"
                ) from e
        return replace(self, params=typed)

    def to_body(self) -> dict[str, Any]:
        """JSON-safe wire body."""
        params = {}
        for name, value in self.params.items():
            if isinstance(value, datetime):
                value = format_timestamp(value)
            elif isinstance(value, Enum):
                value = value.value
            params[name] = value
        body = {"requestType": self.request_type.value, "params": params}
        if self.epsilon_ms is not None:
            body["epsilonMs"] = self.epsilon_ms
        return body


def _normalize_value(value: Any) -> Any:
    if value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def normalize_record(record: dict[str, Any]) -> dict[str, Any]:
    """Lower-case keys and turn store-specific nulls into None."""
    return {str(k).lower(): _normalize_value(v) for k, v in record.items()}


@dataclass
class ProvenanceResponse:
    """Records returned for one request (keys are lower-case)."""

    request: ProvenanceRequest
    records: list[dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        self.records = [normalize_record(r) for r in self.records]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def to_body(self) -> dict[str, Any]:
        return {"request": self.request.to_body(), "records": self.records}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for store requests.

    attempts=1 means a single try and no retry.
    """

    attempts: int = 1
    backoff_seconds: float = 0.5
    max_backoff_seconds: float = 8.0

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        return cls(
            attempts=config.attempts,
            backoff_seconds=config.backoff_seconds,
            max_backoff_seconds=config.max_backoff_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (0-based)."""
        return min(self.backoff_seconds * 2**attempt, self.max_backoff_seconds)


class CancellationToken:
    """Deadline and manual cancellation shared by one traversal.

    Example:
        token = CancellationToken.with_deadline(30)
        token.check()        # raises TraversalCancelledError once expired
        token.cancel()       # cancel from the outside
    """

    def __init__(self, deadline: float | None = None, clock=time.monotonic):
        self._clock = clock
        self._deadline = deadline
        self._cancelled = False

    @classmethod
    def with_deadline(cls, seconds: float | None, clock=time.monotonic) -> "CancellationToken":
        deadline = clock() + seconds if seconds is not None else None
        return cls(deadline=deadline, clock=clock)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds left before the deadline (None = no deadline)."""
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock(), 0.0)

    def check(self) -> None:
        if self._cancelled:
            raise TraversalCancelledError("Traversal cancelled")
        if self.expired:
            raise TraversalCancelledError("Traversal deadline exceeded")


class EventStore(ABC):
    """Base class for event stores answering provenance requests.

    Subclasses implement `_execute` and return raw records. Validation,
    retries and deadlines are handled here.
    """

    def __init__(
        self,
        epsilon_ms: int = DEFAULT_EPSILON_MS,
        retry: RetryPolicy | None = None,
        console: Console | None = None,
    ):
        self.epsilon_ms = epsilon_ms
        self.retry = retry or RetryPolicy()
        self.console = console or Console()

    @abstractmethod
    async def _execute(self, request: ProvenanceRequest) -> list[dict[str, Any]]:
        """Run a validated request and return raw records."""
        ...

    async def query(
        self,
        request: ProvenanceRequest,
        token: CancellationToken | None = None,
        retry: RetryPolicy | None = None,
    ) -> ProvenanceResponse:
        """Validate and run a request.

        Args:
            request: Request to run
            token: Cancellation token bounding every attempt
            retry: Retry policy for this call (default: the store's)

        Raises:
            ValidationError: Before any store access
            TraversalCancelledError: Token cancelled or deadline exceeded
            QueryError: Store failure after the retry policy is exhausted
        """
        request = request.validate()
        name = request.request_type.value
        retry = retry or self.retry

        attempt = 0
        while True:
            if token is not None:
                token.check()
            try:
                records = await self._bounded(self._execute(request), token)
                return ProvenanceResponse(request=request, records=records)
            except (ValidationError, TraversalCancelledError):
                raise
            except asyncio.TimeoutError as e:
                raise TraversalCancelledError(
                    f"{name}: traversal deadline exceeded", request_type=name
                ) from e
            except Exception as e:
                attempt += 1
                if attempt >= retry.attempts:
                    if isinstance(e, QueryError):
                        raise
                    raise QueryError(f"{name} failed: {e}", request_type=name) from e
                delay = retry.delay(attempt - 1)
                self.console.print(
                    f"[yellow]⚠️ {name} failed ({e}), retry {attempt}/"
                    f"{retry.attempts - 1} in {delay:.2f}s[/yellow]"
                )
                await asyncio.sleep(delay)

    def epsilon_for(self, request: ProvenanceRequest) -> int:
        """Skew tolerance for a request: its own, else the store's."""
        return self.epsilon_ms if request.epsilon_ms is None else request.epsilon_ms

    async def _bounded(self, coro, token: CancellationToken | None):
        remaining = token.remaining() if token is not None else None
        if remaining is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=remaining)

    async def aclose(self) -> None:
        """Release store resources."""
        pass

    async def __aenter__(self) -> "EventStore":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
