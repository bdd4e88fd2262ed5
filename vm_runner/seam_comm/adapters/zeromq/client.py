"""
ZeroMQ Client Adapter

JSON-RPC 2.0 client over a ZeroMQ REQ socket, driven by asyncio.
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

import zmq
import zmq.asyncio

from vm_runner.seam_comm.adapters.adapter_interface import ClientAdapterInterface
from vm_runner.seam_comm.telemetry.metrics import increment_counter, record_latency
from vm_runner.seam_comm.telemetry.tracer import inject_trace_context

logger = logging.getLogger(__name__)


class ZeroMQClient(ClientAdapterInterface):
    """
    ZeroMQ client adapter implementing JSON-RPC 2.0 request/response.

    A REQ socket that missed its reply cannot send again, so the socket is
    recreated after every timeout or transport error.
    """

    def __init__(self,
                 server_address: str = "tcp://localhost:5555",
                 timeout_ms: int = 5000,
                 context: Optional[zmq.asyncio.Context] = None):
        """Initialize ZeroMQ client

        Args:
            server_address: ZeroMQ server address
            timeout_ms: Request timeout (milliseconds)
            context: Shared asyncio ZeroMQ context; a private one is created if omitted
        """
        self.server_address = server_address
        self.timeout_ms = timeout_ms
        self._owns_context = context is None
        self.context = context or zmq.asyncio.Context()
        self.socket = None
        self._open_socket()
        logger.info(f"ZeroMQ client connected to {server_address}")

    def _open_socket(self):
        self.socket = self.context.socket(zmq.REQ)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.connect(self.server_address)

    def _reset_socket(self):
        if self.socket is not None:
            self.socket.close()
        self._open_socket()

    def close(self):
        """Close client connection"""
        if self.socket is not None:
            self.socket.close()
            self.socket = None
        if self._owns_context and self.context is not None:
            self.context.term()
            self.context = None

    async def call(self, method: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
        """Send a JSON-RPC 2.0 request and wait for the response

        Args:
            method: Method name to call
            params: Method parameters

        Returns:
            Dict: JSON-RPC response object

        Raises:
            TimeoutError: Request timed out
            ConnectionError: Connection failed
            ValueError: Invalid response
        """
        request_id = str(uuid.uuid4())
        request = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or {},
            "id": request_id,
        }

        trace_context = inject_trace_context()
        if trace_context:
            request["trace_context"] = trace_context

        request_json = json.dumps(request)
        start_time = time.time()

        try:
            logger.debug(f"Sending request: {request_json[:200]}...")
            await self.socket.send(request_json.encode("utf-8"))
            increment_counter("rpc.client.requests", 1, {"method": method})

            response_bytes = await asyncio.wait_for(self.socket.recv(), self.timeout_ms / 1000)
            latency_ms = (time.time() - start_time) * 1000
            record_latency("rpc.client.latency", latency_ms, {"method": method})
            logger.debug(f"Response received, latency: {latency_ms:.2f}ms")

        except asyncio.TimeoutError:
            self._reset_socket()
            increment_counter("rpc.client.errors", 1, {"type": "timeout", "method": method})
            raise TimeoutError(f"ZeroMQ request timed out ({self.timeout_ms}ms)")

        except zmq.error.ZMQError as e:
            self._reset_socket()
            logger.error(f"ZeroMQ error: {e}")
            increment_counter("rpc.client.errors", 1, {"type": "zmq_error", "method": method})
            raise ConnectionError(f"ZeroMQ connection error: {e}") from e

        response = json.loads(response_bytes.decode("utf-8"))

        if not isinstance(response, dict) or response.get("jsonrpc") != "2.0":
            increment_counter("rpc.client.errors", 1, {"type": "invalid_response", "method": method})
            raise ValueError(f"Invalid JSON-RPC 2.0 response: {response}")

        if response.get("id") != request_id:
            increment_counter("rpc.client.errors", 1, {"type": "id_mismatch", "method": method})
            raise ValueError(f"Response ID mismatch: {response.get('id')} != {request_id}")

        if "error" in response:
            error = response["error"]
            code = error.get("code", -1) if isinstance(error, dict) else -1
            message = error.get("message") if isinstance(error, dict) else error
            logger.error(f"RPC call error: {message}, code: {code}")
            increment_counter("rpc.client.errors", 1, {
                "type": "rpc_error",
                "method": method,
                "code": str(code),
            })
            # Keep error object for caller to handle
        else:
            increment_counter("rpc.client.success", 1, {"method": method})

        return response
