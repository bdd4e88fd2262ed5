"""
Async process utilities for the shell scripts that manage the VM.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class ProcessError(RuntimeError):
    """Raised when a command cannot be started."""


@dataclass
class ProcessResult:
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _decode(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


async def spawn(
    argv: List[str],
    cwd: Optional[Union[str, Path]] = None,
) -> asyncio.subprocess.Process:
    """
    Start a command with stdout and stderr piped.

    Raises:
        ProcessError: If the executable is missing or cannot be started
    """
    logger.debug(f"Starting: {' '.join(argv)} (cwd={cwd})")
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ProcessError(f"Cannot start {argv[0]}: {e}") from e
    except OSError as e:
        raise ProcessError(f"Failed to start {' '.join(argv)}: {e}") from e


async def collect(process: asyncio.subprocess.Process, argv: List[str]) -> ProcessResult:
    """Wait for a spawned process and capture its output."""
    stdout, stderr = await process.communicate()
    result = ProcessResult(argv, process.returncode, _decode(stdout), _decode(stderr))
    logger.debug(f"Return code {result.returncode}: {' '.join(argv)}")
    return result
