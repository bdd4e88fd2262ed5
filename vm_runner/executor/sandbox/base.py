"""
Base Sandbox Interface

Abstract base class for per-job execution environments.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..context import ExecutionContext


class SandboxError(Exception):
    """Base exception for sandbox-related errors."""
    pass


class ProvisioningError(SandboxError):
    """The environment could not be brought up; the job fails."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


@dataclass
class EnvironmentHandle:
    """
    One provisioned VM instance.

    The handle exists before any process is spawned, so teardown can work from
    it no matter how far provisioning got.
    """
    instance_number: int
    image_ref: str
    workspace_dir: str
    virt_dir: Path
    private_ip: str
    pid_file: Path
    vm_process: Any = field(default=None, repr=False)
    mount_process: Any = field(default=None, repr=False)
    provisioned: bool = False
    torn_down: bool = False

    @property
    def image_tag(self) -> str:
        return self.image_ref.replace(":", "_")


class SandboxBase(ABC):
    """
    Abstract base class for sandbox implementations.

    provision() brings the environment up and raises ProvisioningError on
    failure. teardown() must release whatever exists and never raise.
    """

    @abstractmethod
    def allocate(self, instance_number: int, image_ref: str, workspace_dir: str) -> EnvironmentHandle:
        pass

    @abstractmethod
    async def provision(
        self,
        handle: EnvironmentHandle,
        job_context: ExecutionContext,
        vm_context: Optional[ExecutionContext] = None,
    ) -> EnvironmentHandle:
        pass

    @abstractmethod
    async def teardown(
        self,
        handle: EnvironmentHandle,
        job_context: Optional[ExecutionContext] = None,
    ) -> None:
        pass
