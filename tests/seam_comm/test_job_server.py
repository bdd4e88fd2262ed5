"""
Tests for plan event publication and outcome classification
"""
from unittest.mock import AsyncMock, Mock

import pytest

from vm_runner.executor.job import CompletionEvent, Plan, RejectionKind, ServiceEndpoint, TaskResult
from vm_runner.seam_comm.job_server import RAISE_PLAN_EVENT, JobServerClient, RemoteCallError, rejection_kind

ENDPOINT = ServiceEndpoint("SystemVssConnection", "tcp://orchestrator:5555", {"token": "secret"})
PLAN = Plan("scope-1", "actions", "plan-1", 9)
EVENT = CompletionEvent(42, "job-1", TaskResult.FAILED)


@pytest.fixture
def client():
    client = Mock()
    client.call = AsyncMock(return_value={"jsonrpc": "2.0", "id": "1", "result": {}})
    return client


@pytest.fixture
def factory(client):
    return Mock(return_value=client)


@pytest.fixture
def job_server(factory):
    return JobServerClient(timeout_ms=1000, client_factory=factory)


class TestConnect:

    @pytest.mark.asyncio
    async def test_uses_endpoint_url(self, job_server, factory):
        await job_server.connect(ENDPOINT)
        factory.assert_called_once_with(
            "zeromq", {"server_address": "tcp://orchestrator:5555", "timeout_ms": 1000}
        )

    @pytest.mark.asyncio
    async def test_configured_address_wins(self, factory):
        job_server = JobServerClient("tcp://127.0.0.1:7000", client_factory=factory)
        await job_server.connect(ENDPOINT)
        assert factory.call_args.args[1]["server_address"] == "tcp://127.0.0.1:7000"

    @pytest.mark.asyncio
    async def test_not_connected(self, job_server):
        with pytest.raises(RuntimeError):
            await job_server.raise_plan_event(PLAN, EVENT)

    @pytest.mark.asyncio
    async def test_close(self, job_server, client):
        await job_server.connect(ENDPOINT)
        job_server.close()
        job_server.close()
        client.close.assert_called_once_with()
        assert job_server.client is None


class TestRaisePlanEvent:
    """Responses map to delivered, terminal or retryable outcomes"""

    @pytest.mark.asyncio
    async def test_delivered(self, job_server, client):
        await job_server.connect(ENDPOINT)

        outcome = await job_server.raise_plan_event(PLAN, EVENT)

        assert outcome.delivered
        method, params = client.call.await_args.args
        assert method == RAISE_PLAN_EVENT
        assert params["plan_id"] == "plan-1"
        assert params["scope_identifier"] == "scope-1"
        assert params["event"]["result"] == "failed"
        assert params["authorization"] == {"token": "secret"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,kind", [
        (-32040, RejectionKind.PLAN_NOT_FOUND),
        (-32041, RejectionKind.PLAN_SECURITY_VIOLATION),
        (-32042, RejectionKind.PLAN_TERMINATED),
    ])
    async def test_terminal_rejection(self, job_server, client, code, kind):
        client.call.return_value = {"jsonrpc": "2.0", "id": "1", "error": {"code": code, "message": "no"}}
        await job_server.connect(ENDPOINT)

        outcome = await job_server.raise_plan_event(PLAN, EVENT)

        assert outcome.is_terminal
        assert outcome.rejection is kind
        assert isinstance(outcome.cause, RemoteCallError)
        assert outcome.cause.code == code

    @pytest.mark.asyncio
    async def test_other_remote_error_is_retryable(self, job_server, client):
        client.call.return_value = {"jsonrpc": "2.0", "id": "1", "error": {"code": -32603, "message": "busy"}}
        await job_server.connect(ENDPOINT)

        outcome = await job_server.raise_plan_event(PLAN, EVENT)

        assert not outcome.delivered
        assert not outcome.is_terminal
        assert "busy" in str(outcome.cause)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", ["plan gone", ["busy"], 503])
    async def test_malformed_remote_error_is_retryable(self, job_server, client, error):
        client.call.return_value = {"jsonrpc": "2.0", "id": "1", "error": error}
        await job_server.connect(ENDPOINT)

        outcome = await job_server.raise_plan_event(PLAN, EVENT)

        assert not outcome.delivered
        assert not outcome.is_terminal
        assert isinstance(outcome.cause, RemoteCallError)
        assert outcome.cause.message == str(error)

    @pytest.mark.asyncio
    async def test_non_object_response_is_retryable(self, job_server, client):
        client.call.return_value = ["not", "an", "object"]
        await job_server.connect(ENDPOINT)

        outcome = await job_server.raise_plan_event(PLAN, EVENT)

        assert not outcome.delivered
        assert not outcome.is_terminal
        assert isinstance(outcome.cause, ValueError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [TimeoutError("slow"), ConnectionError("reset"), ValueError("bad id")])
    async def test_transport_errors_are_retryable(self, job_server, client, error):
        client.call.side_effect = error
        await job_server.connect(ENDPOINT)

        outcome = await job_server.raise_plan_event(PLAN, EVENT)

        assert not outcome.is_terminal
        assert outcome.cause is error


class TestRejectionKind:

    def test_rejection_from_error_data(self):
        error = {"code": -32000, "message": "gone", "data": {"type": "PlanTerminated"}}
        assert rejection_kind(error) is RejectionKind.PLAN_TERMINATED

    def test_unknown_error(self):
        assert rejection_kind({"code": -32000, "data": {"type": "Other"}}) is None
        assert rejection_kind({"code": -32000, "data": "text"}) is None

    def test_unhashable_code(self):
        assert rejection_kind({"code": ["x"], "message": "odd"}) is None
