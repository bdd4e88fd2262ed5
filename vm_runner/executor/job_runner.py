"""
Job Runner

Runs one job end to end: provision the VM, apply the security policy, hand the
steps to the step engine and report completion. The VM is torn down on every
path out of run().
"""

import asyncio
import enum
import logging
import os
import platform
import socket
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from typing import Callable, Optional

from vm_runner.config import RunnerConfig
from vm_runner.seam_comm.telemetry.metrics import increment_counter
from vm_runner.seam_comm.telemetry.tracer import create_span

from .cancellation import CancellationToken, ShutdownReason
from .completion import CompletionReporter, QueueLease
from .context import ExecutionContext, Issue, IssueType
from .errors import JobCancelledError
from .interfaces import JobExtension, JobServer, JobServerQueue, StepsRunner, TempDirectoryManager
from .job import JobRequest, TaskResult
from .sandbox.base import EnvironmentHandle, ProvisioningError, SandboxBase
from .security.gate import SecurityGate

logger = logging.getLogger(__name__)

SECURITY_DENIED_MESSAGE = "Running job on this worker disallowed by security policy"


class JobState(enum.Enum):
    INITIALIZING = "initializing"
    PROVISIONING = "provisioning"
    SECURITY_GATE = "security_gate"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    TEARDOWN = "teardown"
    COMPLETED = "completed"


def shutdown_message(reason: Optional[ShutdownReason]) -> str:
    if reason is ShutdownReason.OPERATING_SYSTEM_SHUTDOWN:
        return f"Operating system is shutting down for computer '{socket.gethostname()}'"
    return (
        "The runner has received a shutdown signal. This can happen when the runner "
        "service is stopped, or a manually started runner is canceled."
    )


def runner_os() -> str:
    return {"Darwin": "macOS"}.get(platform.system(), platform.system())


class JobRunner:
    """
    Job lifecycle for one job request.

    Handles:
    - VM provisioning and guaranteed teardown
    - Pull request security policy
    - Step engine hand-off and finalization
    - Result merging and completion reporting
    """

    def __init__(
        self,
        config: RunnerConfig,
        job_server: JobServer,
        queue: JobServerQueue,
        sandbox: SandboxBase,
        job_extension: JobExtension,
        steps_runner: StepsRunner,
        security_gate: Optional[SecurityGate] = None,
        temp_directory: Optional[TempDirectoryManager] = None,
        runner_shutdown: Optional[CancellationToken] = None,
        log_sink: Optional[Callable[[str, str], None]] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config
        self.job_server = job_server
        self.queue = queue
        self.sandbox = sandbox
        self.job_extension = job_extension
        self.steps_runner = steps_runner
        self.security_gate = security_gate or SecurityGate()
        self.temp_directory = temp_directory
        self.runner_shutdown = runner_shutdown or CancellationToken()
        self.log_sink = log_sink
        self._sleep = sleep
        self.state = JobState.INITIALIZING

    async def run(self, request: JobRequest, cancellation: Optional[CancellationToken] = None) -> TaskResult:
        """
        Run the job and return its final result.

        Raises:
            ValueError: If the request is missing resources, variables, steps
                or its system connection
            CompletionPublishError: If the job completed event could not be
                delivered after every retry
        """
        self.state = JobState.INITIALIZING
        request.validate()
        logger.info(f"Job ID {request.job_id}")

        start_time = datetime.now(timezone.utc)
        system_connection = request.system_connection()
        handle = self._allocate_environment(request)

        await self.job_server.connect(system_connection)
        queue = QueueLease(self.queue)
        reporter = CompletionReporter(
            self.job_server,
            queue,
            temp_directory=self.temp_directory,
            config=self.config.completion,
            sleep=self._sleep,
        )
        queue.start(request)

        context = ExecutionContext(request, cancellation, log_sink=self.log_sink)
        async with AsyncExitStack() as stack:
            stack.push_async_callback(queue.shutdown)
            stack.push_async_callback(self._teardown, handle, context)

            attributes = {"job.id": request.job_id, "job.request_id": request.request_id}
            with create_span("job.run", attributes):
                result = await self._run_job(request, context, handle, reporter, stack, start_time)

        self.state = JobState.COMPLETED
        increment_counter("job.completed", 1, {"result": result.name})
        logger.info(f"Job {request.job_id} completed with result {result.name}")
        return result

    def _allocate_environment(self, request: JobRequest) -> EnvironmentHandle:
        virt = self.config.virt
        repo_full_name = str(request.github.get("repository", ""))
        repo_name = repo_full_name[repo_full_name.rfind("/") + 1:]
        pipeline_directory = repo_name
        workspace_directory = os.path.join(pipeline_directory, repo_name)

        logger.info(f"Runner instance: {virt.instance_number}")
        logger.info(f"QEMU tools directory: {virt.virt_dir}")
        logger.info(f"Job container: {request.job_container}")
        logger.info(f"WorkspaceDirectory: {workspace_directory}")

        handle = self.sandbox.allocate(
            virt.instance_number,
            request.container_image or "",
            workspace_directory,
        )
        request.variables["system.qemuDir"] = str(virt.virt_dir)
        request.variables["system.qemuIp"] = handle.private_ip
        request.variables["system.containerWorkspace"] = workspace_directory
        logger.info(f"QEMU IP: {handle.private_ip}")
        return handle

    async def _run_job(
        self,
        request: JobRequest,
        context: ExecutionContext,
        handle: EnvironmentHandle,
        reporter: CompletionReporter,
        stack: AsyncExitStack,
        start_time: datetime,
    ) -> TaskResult:
        logger.info("Starting the job execution context.")
        context.start()
        if self.temp_directory is not None:
            try:
                self.temp_directory.initialize_temp_directory(context)
            except Exception as e:
                logger.exception(f"Temp directory initialization failed: {e}")
                context.error(e)
                return await reporter.complete(context, request, TaskResult.FAILED)

        self.state = JobState.PROVISIONING
        try:
            await self.sandbox.provision(handle, context)
        except ProvisioningError as e:
            logger.error(f"Provisioning VM {handle.instance_number} failed: {e}")
            return await reporter.complete(context, request, TaskResult.FAILED)
        except Exception as e:
            # the sandbox reports expected failures as ProvisioningError
            logger.exception(f"Caught exception while provisioning VM {handle.instance_number}: {e}")
            context.error(e)
            return await reporter.complete(context, request, TaskResult.FAILED)

        self.state = JobState.SECURITY_GATE
        try:
            with create_span("job.security_gate"):
                decision = self.security_gate.check(request.context_data.get("github"))
        except Exception as e:
            logger.exception(f"Security gate check failed: {e}")
            context.error(f"{SECURITY_DENIED_MESSAGE}: {e}")
            return await reporter.complete(context, request, TaskResult.FAILED)
        if not decision.allowed:
            context.error(f"{SECURITY_DENIED_MESSAGE}: {decision.reason}")
            return await reporter.complete(context, request, TaskResult.FAILED)

        self.state = JobState.EXECUTING
        context.debug(f"Starting: {request.job_display_name}")
        registration = self.runner_shutdown.register(lambda: self._on_runner_shutdown(context))
        stack.callback(registration.dispose)

        try:
            self._validate_work_directory()
        except OSError as e:
            logger.error(f"Work directory validation failed: {e}")
            context.error(e)
            return await reporter.complete(context, request, TaskResult.FAILED)

        self._set_runner_context(context)

        logger.info("Initialize job. Getting all job steps.")
        try:
            steps = await self.job_extension.initialize_job(context, request)
        except JobCancelledError as e:
            if context.cancellation.is_cancelled:
                # the server owns the job level issue for cancellation
                logger.error(f"Job is canceled during initialize: {e}")
                return await reporter.complete(context, request, TaskResult.CANCELED)
            logger.error(f"Job initialize failed: {type(e).__name__}: {e}")
            context.error(e)
            return await reporter.complete(context, request, TaskResult.FAILED)
        except Exception as e:
            logger.error(f"Job initialize failed: {type(e).__name__}: {e}")
            context.error(e)
            return await reporter.complete(context, request, TaskResult.FAILED)

        logger.info(f"Total job steps: {len(steps)}.")

        failure = None
        try:
            context.job_steps.extend(steps)
            with create_span("job.steps", {"job.steps": len(steps)}):
                await self.steps_runner.run(context)
        except Exception as e:
            # the steps runner records step failures itself; reaching here is a bug in it
            logger.exception(f"Caught exception from job steps runner: {e}")
            context.error(e)
            failure = TaskResult.FAILED
        finally:
            self.state = JobState.FINALIZING
            if not self._finalize(context, request, start_time):
                failure = TaskResult.FAILED

        current = context.result if context.result is not None else TaskResult.SUCCEEDED
        logger.info(f"Job result after all job steps finish: {current.name}")
        logger.info("Completing the job execution context.")
        return await reporter.complete(context, request, failure)

    def _finalize(self, context: ExecutionContext, request: JobRequest, start_time: datetime) -> bool:
        logger.info("Finalize job.")
        try:
            self.job_extension.finalize_job(context, request, start_time)
            return True
        except Exception as e:
            logger.exception(f"Job finalize failed: {e}")
            context.error(e)
            return False

    def _on_runner_shutdown(self, context: ExecutionContext) -> None:
        reason = self.runner_shutdown.reason
        context.add_issue(Issue(IssueType.ERROR, shutdown_message(reason)))
        context.cancellation.cancel(reason)

    def _validate_work_directory(self) -> None:
        work_dir = self.config.work_dir
        logger.info(f"Validating directory permissions for: '{work_dir}'")
        os.makedirs(work_dir, exist_ok=True)
        if not os.access(work_dir, os.X_OK):
            raise PermissionError(f"Permission to execute in '{work_dir}' is denied")

    def _set_runner_context(self, context: ExecutionContext) -> None:
        if context.write_debug:
            context.set_runner_context("debug", "1")
        context.set_runner_context("os", runner_os())

        tools_dir = self.config.tools_dir
        os.makedirs(tools_dir, exist_ok=True)
        context.set_runner_context("tool_cache", str(tools_dir))

    async def _teardown(self, handle: EnvironmentHandle, context: ExecutionContext) -> None:
        self.state = JobState.TEARDOWN
        logger.info("Entering teardown.")
        with create_span("job.teardown", {"vm.instance": handle.instance_number}):
            await self.sandbox.teardown(handle, context)
