"""
Cancellation Tokens

Cooperative cancellation shared between the runner host, the job lifecycle
and the step engine.
"""

import asyncio
import enum
import logging
from typing import Callable, List, Optional

from .errors import JobCancelledError

logger = logging.getLogger(__name__)


class ShutdownReason(enum.Enum):
    USER_CANCELLED = "UserCancelled"
    OPERATING_SYSTEM_SHUTDOWN = "OperatingSystemShutdown"


class Registration:
    """Handle returned by CancellationToken.register; dispose() detaches it."""

    def __init__(self, token: "CancellationToken", callback: Callable[[], None]):
        self._token = token
        self._callback = callback

    def dispose(self) -> None:
        if self._token is not None:
            self._token._remove(self._callback)
            self._token = None


class CancellationToken:
    """
    A one-shot cancellation signal.

    Callbacks registered before cancellation run exactly once when cancel() is
    first called; callbacks registered afterwards run immediately.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._callbacks: List[Callable[[], None]] = []
        self.reason: Optional[ShutdownReason] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[ShutdownReason] = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def register(self, callback: Callable[[], None]) -> Registration:
        if self.is_cancelled:
            callback()
        else:
            self._callbacks.append(callback)
        return Registration(self, callback)

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise JobCancelledError("The job has been cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    def _remove(self, callback: Callable[[], None]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass
