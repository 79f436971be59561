"""🧪 Tests for the provenance request contract and the EventStore base."""

import asyncio
from dataclasses import replace
from datetime import datetime

import httpx
import pandas as pd
import pytest
from conftest import ScriptedStore, at

from provgraph.errors import QueryError, TraversalCancelledError, ValidationError
from provgraph.query.contract import (
    REQUIRED_PARAMS,
    CancellationToken,
    Direction,
    ProvenanceRequest,
    RequestType,
    RetryPolicy,
    normalize_record,
)
from provgraph.query.rest_store import RestEventStore


def fs_access_params(**overrides):
    params = {
        "clusterNode": "node-1",
        "pid": 100,
        "birthTime": at("10:00:00.000"),
        "deathTime": at("10:00:05.000"),
    }
    params.update(overrides)
    return params


class TestRequestTable:
    """Tests for the request-type table."""

    def test_every_request_type_has_an_entry(self):
        """Test that the table covers every request type."""
        assert set(REQUIRED_PARAMS) == set(RequestType)

    def test_true_ipc_needs_no_death_time(self):
        """Test that pipe lookups only need the birth side of the identity."""
        assert "deathTime" not in REQUIRED_PARAMS[RequestType.PROCESS_TRUE_IPC]

    def test_workflows_needs_nothing(self):
        """Test that listing workflows has no required params."""
        ProvenanceRequest.build(RequestType.WORKFLOWS).validate()


class TestValidation:
    """Tests for ProvenanceRequest.validate."""

    def test_missing_birth_time_rejected_before_store_access(self):
        """Test that a missing birthTime fails without touching the store."""
        store = ScriptedStore()
        params = fs_access_params()
        del params["birthTime"]
        request = ProvenanceRequest.build(RequestType.PROCESS_FS_ACCESSES, **params)

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(store.query(request))

        assert exc_info.value.missing == ["birthTime"]
        assert store.calls == []

    def test_empty_string_is_missing(self):
        """Test that blank strings count as missing."""
        request = ProvenanceRequest.build(RequestType.FILE_BY_PATH, path="  ")
        with pytest.raises(ValidationError, match="path"):
            request.validate()

    def test_zero_is_a_value(self):
        """Test that 0 is accepted for integer params."""
        request = ProvenanceRequest.build(RequestType.FILE_BY_INODE, path="/a", inode=0)
        assert request.validate().params["inode"] == 0

    def test_unknown_request_type(self):
        """Test that unknown request types are validation errors."""
        with pytest.raises(ValidationError, match="Unknown request type"):
            ProvenanceRequest.build("FILE_BY_COLOR", path="/a")

    def test_uncoercible_param(self):
        """Test that a param of the wrong type is rejected."""
        request = ProvenanceRequest.build(RequestType.FILE_BY_INODE, path="/a", inode="seven")
        with pytest.raises(ValidationError, match="inode"):
            request.validate()

    def test_coercion(self):
        """Test that wire values are coerced to typed params."""
        request = ProvenanceRequest.build(
            RequestType.PROCESS_FS_ACCESSES,
            **fs_access_params(
                pid="100", birthTime="2024-05-01T10:00:00.000Z", direction="read"
            ),
        ).validate()
        assert request.params["pid"] == 100
        assert request.params["birthTime"] == datetime(2024, 5, 1, 10, 0, 0)
        assert request.params["direction"] == Direction.READ

    def test_optional_none_dropped(self):
        """Test that unset optional params are not sent."""
        request = ProvenanceRequest.build(
            RequestType.FILE_BY_INODE, path="/a", inode=1, constraintTime=None
        )
        assert "constraintTime" not in request.params


class TestWireFormat:
    """Tests for request/response bodies."""

    def test_from_body(self):
        """Test parsing a wire body."""
        request = ProvenanceRequest.from_body(
            {"requestType": "FILE_BY_PATH", "params": {"path": "/data/a"}}
        )
        assert request.request_type == RequestType.FILE_BY_PATH

    def test_from_body_without_request_type(self):
        """Test that a body without requestType is rejected."""
        with pytest.raises(ValidationError, match="requestType"):
            ProvenanceRequest.from_body({"params": {}})

    def test_to_body(self):
        """Test the JSON-safe wire body."""
        body = ProvenanceRequest.build(
            RequestType.PROCESS_FS_ACCESSES, **fs_access_params(), direction=Direction.WRITE
        ).to_body()
        assert body["requestType"] == "PROCESS_FS_ACCESSES"
        assert body["params"]["birthTime"] == "2024-05-01 10:00:00.000"
        assert body["params"]["direction"] == "write"

    def test_epsilon_on_the_wire(self):
        """Test that a request-level tolerance is sent and parsed back."""
        request = ProvenanceRequest.build(RequestType.FILE_BY_PATH, path="/data/a")
        assert "epsilonMs" not in request.to_body()

        body = replace(request, epsilon_ms=0).to_body()

        assert body["epsilonMs"] == 0
        assert ProvenanceRequest.from_body(body).epsilon_ms == 0

    def test_invalid_epsilon_rejected(self):
        """Test a non-integer epsilonMs."""
        with pytest.raises(ValidationError, match="epsilonMs"):
            ProvenanceRequest.from_body(
                {"requestType": "WORKFLOWS", "params": {}, "epsilonMs": "soon"}
            )

    def test_epsilon_for(self):
        """Test that the request tolerance wins over the store's."""
        store = ScriptedStore(epsilon_ms=500)
        request = ProvenanceRequest.build(RequestType.WORKFLOWS)
        assert store.epsilon_for(request) == 500
        assert store.epsilon_for(replace(request, epsilon_ms=0)) == 0

    def test_normalize_record(self):
        """Test that keys are lower-cased and nulls normalized."""
        record = normalize_record(
            {
                "PATH": "/a",
                "Event_Time": pd.Timestamp("2024-05-01"),
                "inode": float("nan"),
                "death_time": pd.NaT,
            }
        )
        assert record == {
            "path": "/a",
            "event_time": datetime(2024, 5, 1),
            "inode": None,
            "death_time": None,
        }


class TestRetryPolicy:
    """Tests for bounded exponential backoff."""

    def test_delay_doubles_and_caps(self):
        """Test the backoff sequence."""
        policy = RetryPolicy(attempts=5, backoff_seconds=1, max_backoff_seconds=3)
        assert [policy.delay(i) for i in range(4)] == [1, 2, 3, 3]

    def test_transient_failure_retried(self, no_backoff):
        """Test that a failing request succeeds after retries."""
        store = ScriptedStore(
            handlers={RequestType.WORKFLOWS: lambda params: [{"id": 1}]},
            failures={RequestType.WORKFLOWS: 2},
            retry=no_backoff,
        )
        response = asyncio.run(store.query(ProvenanceRequest.build(RequestType.WORKFLOWS)))

        assert response.records == [{"id": 1}]
        assert len(store.calls) == 3

    def test_exhausted_retries_raise_query_error(self, no_backoff):
        """Test that the store error surfaces as QueryError."""
        store = ScriptedStore(failures={RequestType.WORKFLOWS: 5}, retry=no_backoff)

        with pytest.raises(QueryError) as exc_info:
            asyncio.run(store.query(ProvenanceRequest.build(RequestType.WORKFLOWS)))

        assert exc_info.value.request_type == "WORKFLOWS"
        assert len(store.calls) == 3

    def test_no_retry_by_default(self):
        """Test that the default policy tries once."""
        store = ScriptedStore(failures={RequestType.WORKFLOWS: 1})
        with pytest.raises(QueryError):
            asyncio.run(store.query(ProvenanceRequest.build(RequestType.WORKFLOWS)))
        assert len(store.calls) == 1

    def test_per_call_policy_overrides_store(self, no_backoff):
        """Test that a policy passed to query() replaces the store's."""
        store = ScriptedStore(failures={RequestType.WORKFLOWS: 1})

        asyncio.run(store.query(ProvenanceRequest.build(RequestType.WORKFLOWS), retry=no_backoff))

        assert len(store.calls) == 2


class TestCancellationToken:
    """Tests for deadlines and manual cancellation."""

    def test_manual_cancel(self):
        """Test that a cancelled token stops the next query."""
        token = CancellationToken()
        token.cancel()
        store = ScriptedStore()

        with pytest.raises(TraversalCancelledError):
            asyncio.run(store.query(ProvenanceRequest.build(RequestType.WORKFLOWS), token))
        assert store.calls == []

    def test_deadline_with_fake_clock(self):
        """Test that the deadline is measured on the token's clock."""
        now = [100.0]
        token = CancellationToken.with_deadline(5, clock=lambda: now[0])
        assert token.remaining() == pytest.approx(5)
        assert not token.expired
        now[0] = 106.0
        assert token.expired
        with pytest.raises(TraversalCancelledError):
            token.check()

    def test_slow_store_bounded_by_deadline(self):
        """Test that a query running past the deadline is cancelled."""
        store = ScriptedStore(delay=1.0)
        token = CancellationToken.with_deadline(0.05)

        with pytest.raises(TraversalCancelledError):
            asyncio.run(store.query(ProvenanceRequest.build(RequestType.WORKFLOWS), token))

    def test_no_deadline(self):
        """Test that a token without deadline never expires."""
        token = CancellationToken.with_deadline(None)
        assert token.remaining() is None
        token.check()


class TestRestEventStore:
    """Tests for the HTTP store (mocked transport)."""

    def test_posts_request_body(self):
        """Test the request sent and the records returned."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"records": [{"PATH": "/a", "INODE": 1}]})

        store = RestEventStore("http://prov.test/", transport=httpx.MockTransport(handler))
        request = ProvenanceRequest.build(RequestType.FILE_BY_PATH, path="/a")

        async def run():
            async with store:
                return await store.query(request)

        response = asyncio.run(run())

        assert seen["url"] == "http://prov.test/provenance"
        assert b'"requestType":"FILE_BY_PATH"' in seen["body"].replace(b" ", b"")
        assert response.records == [{"path": "/a", "inode": 1}]

    def test_error_status(self):
        """Test that an error status becomes a QueryError with the API message."""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(500, json={"message": "database is down"})
        )
        store = RestEventStore("http://prov.test", transport=transport)

        with pytest.raises(QueryError, match="database is down"):
            asyncio.run(store.query(ProvenanceRequest.build(RequestType.WORKFLOWS)))

    def test_missing_records(self):
        """Test that a body without records is rejected."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"rows": []}))
        store = RestEventStore("http://prov.test", transport=transport)

        with pytest.raises(QueryError, match="records"):
            asyncio.run(store.query(ProvenanceRequest.build(RequestType.WORKFLOWS)))
