"""
Job Server Client

Publishes plan events to the orchestration service over a JSON-RPC adapter
and classifies the service's answer.
"""

import logging
from typing import Any, Callable, Dict, Optional

from vm_runner.executor.interfaces import JobServer
from vm_runner.executor.job import CompletionEvent, Plan, PublishOutcome, RejectionKind, ServiceEndpoint
from vm_runner.seam_comm.adapters import AdapterFactory, AdapterType, ClientAdapterInterface

logger = logging.getLogger(__name__)

RAISE_PLAN_EVENT = "raise_plan_event"

# JSON-RPC error codes the service uses for rejections that no retry can fix
REJECTION_CODES = {
    -32040: RejectionKind.PLAN_NOT_FOUND,
    -32041: RejectionKind.PLAN_SECURITY_VIOLATION,
    -32042: RejectionKind.PLAN_TERMINATED,
}


class RemoteCallError(Exception):
    """The service answered with a JSON-RPC error."""

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        super().__init__(f"{message} (code {code})")
        self.code = code
        self.message = message
        self.data = data


def rejection_kind(error: Dict[str, Any]) -> Optional[RejectionKind]:
    code = error.get("code")
    kind = REJECTION_CODES.get(code) if isinstance(code, int) else None
    if kind is not None:
        return kind
    data = error.get("data")
    if isinstance(data, dict):
        try:
            return RejectionKind(data.get("type"))
        except ValueError:
            return None
    return None


class JobServerClient(JobServer):
    """Job server backed by a client adapter created on connect()."""

    def __init__(
        self,
        server_address: Optional[str] = None,
        timeout_ms: int = 30000,
        adapter_type: str = AdapterType.ZEROMQ,
        client_factory: Callable[[str, Dict[str, Any]], ClientAdapterInterface] = AdapterFactory.create_client,
    ):
        self.server_address = server_address
        self.timeout_ms = timeout_ms
        self.adapter_type = adapter_type
        self._client_factory = client_factory
        self.client: Optional[ClientAdapterInterface] = None
        self._authorization: Dict[str, Any] = {}

    async def connect(self, endpoint: ServiceEndpoint) -> None:
        address = self.server_address or endpoint.url
        logger.info(f"Creating job server with URL: {address}")
        self.client = self._client_factory(
            self.adapter_type,
            {"server_address": address, "timeout_ms": self.timeout_ms},
        )
        self._authorization = dict(endpoint.authorization)

    async def raise_plan_event(self, plan: Plan, event: CompletionEvent) -> PublishOutcome:
        if self.client is None:
            raise RuntimeError("Job server is not connected")

        params = {
            "scope_identifier": plan.scope_identifier,
            "plan_type": plan.plan_type,
            "plan_id": plan.plan_id,
            "event": event.to_dict(),
            "authorization": self._authorization,
        }
        try:
            response = await self.client.call(RAISE_PLAN_EVENT, params)
        except (TimeoutError, ConnectionError, ValueError) as e:
            return PublishOutcome.retryable(e)

        if not isinstance(response, dict):
            return PublishOutcome.retryable(ValueError(f"Unexpected response: {response!r}"))

        error = response.get("error")
        if error is None:
            return PublishOutcome.ok()
        if not isinstance(error, dict):
            return PublishOutcome.retryable(RemoteCallError(None, str(error)))

        cause = RemoteCallError(error.get("code"), error.get("message", ""), error.get("data"))
        kind = rejection_kind(error)
        if kind is not None:
            return PublishOutcome.terminal(kind, cause)
        return PublishOutcome.retryable(cause)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
