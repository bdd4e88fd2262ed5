"""
Readiness Scanner

Splits VM boot output into the part the job log should see and the
diagnostics that follow the debug marker.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_DEBUG_MARKER = "DEBUG START"


class ReadinessScanner:
    """
    Forwards boot output lines until the debug marker is seen.

    The marker line and everything after it are only written to the runner
    log; the stream is still drained so the process can exit.
    """

    def __init__(
        self,
        forward: Optional[Callable[[str], None]] = None,
        marker: str = DEFAULT_DEBUG_MARKER,
    ):
        self.forward = forward
        self.marker = marker
        self.ready = False
        self.lines_read = 0

    def feed(self, line: str) -> bool:
        """Classify one line. Returns True if it was forwarded."""
        self.lines_read += 1
        if not self.ready and self.marker in line:
            self.ready = True
        logger.info(line)
        if self.ready:
            return False
        if self.forward is not None:
            self.forward(line)
        return True

    async def scan(self, stream: asyncio.StreamReader) -> None:
        """Consume the stream until EOF."""
        while True:
            raw = await stream.readline()
            if not raw:
                break
            self.feed(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
