"""
ZeroMQ client adapter tests

Runs the client against an in-test REP socket to verify JSON-RPC 2.0
request/response handling and recovery after a missed reply.
"""
import asyncio
import json

import pytest
import zmq
import zmq.asyncio

from vm_runner.seam_comm.adapters import AdapterFactory
from vm_runner.seam_comm.adapters.zeromq import ZeroMQClient


@pytest.fixture
def zmq_context():
    context = zmq.asyncio.Context()
    yield context
    context.term()


@pytest.fixture
def server(zmq_context):
    """REP socket bound to a random local port, with its address"""
    socket = zmq_context.socket(zmq.REP)
    socket.setsockopt(zmq.LINGER, 0)
    port = socket.bind_to_random_port("tcp://127.0.0.1")
    yield socket, f"tcp://127.0.0.1:{port}"
    socket.close()


async def reply_once(socket, make_response):
    request = json.loads(await socket.recv())
    await socket.send(json.dumps(make_response(request)).encode("utf-8"))
    return request


class TestZeroMQClient:

    @pytest.mark.asyncio
    async def test_call_round_trip(self, zmq_context, server):
        rep_socket, address = server
        client = ZeroMQClient(address, timeout_ms=2000, context=zmq_context)
        reply = asyncio.ensure_future(reply_once(
            rep_socket,
            lambda req: {"jsonrpc": "2.0", "id": req["id"], "result": {"echo": req["params"]}},
        ))
        try:
            response = await client.call("raise_plan_event", {"plan_id": "p"})
            request = await reply
        finally:
            client.close()

        assert response["result"] == {"echo": {"plan_id": "p"}}
        assert request["jsonrpc"] == "2.0"
        assert request["method"] == "raise_plan_event"

    @pytest.mark.asyncio
    async def test_error_response_is_returned(self, zmq_context, server):
        rep_socket, address = server
        client = ZeroMQClient(address, timeout_ms=2000, context=zmq_context)
        reply = asyncio.ensure_future(reply_once(
            rep_socket,
            lambda req: {"jsonrpc": "2.0", "id": req["id"], "error": {"code": -32042, "message": "terminated"}},
        ))
        try:
            response = await client.call("raise_plan_event")
            await reply
        finally:
            client.close()

        assert response["error"]["code"] == -32042

    @pytest.mark.asyncio
    async def test_id_mismatch(self, zmq_context, server):
        rep_socket, address = server
        client = ZeroMQClient(address, timeout_ms=2000, context=zmq_context)
        reply = asyncio.ensure_future(reply_once(
            rep_socket,
            lambda req: {"jsonrpc": "2.0", "id": "someone-else", "result": None},
        ))
        try:
            with pytest.raises(ValueError):
                await client.call("raise_plan_event")
            await reply
        finally:
            client.close()

    @pytest.mark.asyncio
    async def test_non_object_response(self, zmq_context, server):
        rep_socket, address = server
        client = ZeroMQClient(address, timeout_ms=2000, context=zmq_context)
        reply = asyncio.ensure_future(reply_once(rep_socket, lambda req: ["2.0", req["id"]]))
        try:
            with pytest.raises(ValueError):
                await client.call("raise_plan_event")
            await reply
        finally:
            client.close()

    @pytest.mark.asyncio
    async def test_string_error_is_returned(self, zmq_context, server):
        rep_socket, address = server
        client = ZeroMQClient(address, timeout_ms=2000, context=zmq_context)
        reply = asyncio.ensure_future(reply_once(
            rep_socket,
            lambda req: {"jsonrpc": "2.0", "id": req["id"], "error": "plan gone"},
        ))
        try:
            response = await client.call("raise_plan_event")
            await reply
        finally:
            client.close()

        assert response["error"] == "plan gone"

    @pytest.mark.asyncio
    async def test_timeout_resets_socket(self, zmq_context, server):
        _, address = server
        client = ZeroMQClient(address, timeout_ms=100, context=zmq_context)
        first_socket = client.socket
        try:
            with pytest.raises(TimeoutError):
                await client.call("raise_plan_event")
            assert client.socket is not first_socket
            assert first_socket.closed
        finally:
            client.close()

    def test_factory_rejects_unknown_adapter(self):
        with pytest.raises(ValueError):
            AdapterFactory.create_client("carrier-pigeon", {})
