"""
Collaborator Interfaces

Services the job runner calls into but does not implement: the step engine,
the telemetry queue, the temp directory manager, the settings store and the
orchestration service client.
"""

import abc
from datetime import datetime
from typing import Any, List

from vm_runner.config import RunnerSettings

from .context import ExecutionContext
from .job import CompletionEvent, JobRequest, Plan, PublishOutcome, ServiceEndpoint


class JobServerQueue(abc.ABC):
    """Batches and uploads job logs and timeline records."""

    @abc.abstractmethod
    def start(self, request: JobRequest) -> None:
        pass

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Flush everything still queued. Raises when the flush fails."""
        pass


class TempDirectoryManager(abc.ABC):

    @abc.abstractmethod
    def initialize_temp_directory(self, context: ExecutionContext) -> None:
        pass

    @abc.abstractmethod
    def cleanup_temp_directory(self) -> None:
        pass


class ConfigurationStore(abc.ABC):

    @abc.abstractmethod
    def get_settings(self) -> RunnerSettings:
        pass


class JobExtension(abc.ABC):
    """Prepares the job steps and finalizes the job afterwards."""

    @abc.abstractmethod
    async def initialize_job(self, context: ExecutionContext, request: JobRequest) -> List[Any]:
        """
        Build the list of steps to run.

        Raises:
            JobCancelledError: If the job was cancelled while initializing
        """
        pass

    @abc.abstractmethod
    def finalize_job(self, context: ExecutionContext, request: JobRequest, start_time: datetime) -> None:
        pass


class StepsRunner(abc.ABC):
    """Runs the steps queued on context.job_steps and records their results."""

    @abc.abstractmethod
    async def run(self, context: ExecutionContext) -> None:
        pass


class JobServer(abc.ABC):
    """Client for the orchestration service."""

    @abc.abstractmethod
    async def connect(self, endpoint: ServiceEndpoint) -> None:
        pass

    @abc.abstractmethod
    async def raise_plan_event(self, plan: Plan, event: CompletionEvent) -> PublishOutcome:
        """
        Publish a plan event.

        Returns:
            A PublishOutcome describing delivery or rejection
        """
        pass
