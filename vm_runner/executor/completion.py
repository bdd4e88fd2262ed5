"""
Job Completion

Finalizes the job result, flushes the telemetry queue and publishes the job
completed event to the plan.
"""

import asyncio
import logging
from typing import List, Optional

from vm_runner.config import CompletionConfig
from vm_runner.seam_comm.telemetry.metrics import increment_counter

from .context import ExecutionContext
from .errors import CompletionPublishError
from .interfaces import JobServer, JobServerQueue, TempDirectoryManager
from .job import CompletionEvent, JobRequest, Plan, PlanFeatures, PublishOutcome, TaskResult, merge_results

logger = logging.getLogger(__name__)


class QueueLease:
    """
    Owns the job's telemetry queue from start() until the first shutdown().

    Later shutdown() calls do nothing, whether or not the first one failed.
    """

    def __init__(self, queue: JobServerQueue):
        self._queue = queue
        self.is_started = False
        self.is_shut_down = False

    def start(self, request: JobRequest) -> None:
        self._queue.start(request)
        self.is_started = True

    async def shutdown(self, raise_on_failure: bool = False) -> None:
        if self.is_shut_down or not self.is_started:
            return
        self.is_shut_down = True
        try:
            logger.info("Shutting down the job server queue.")
            await self._queue.shutdown()
        except Exception as e:
            if raise_on_failure:
                raise
            logger.error(f"Caught exception from job server queue shutdown: {e}")


class CompletionReporter:
    """
    Computes the final job result and reports it to the plan.

    Publication is retried on transient failures; the three terminal
    rejections fail the job at once. When every attempt fails the collected
    errors are raised as CompletionPublishError.
    """

    def __init__(
        self,
        job_server: JobServer,
        queue: QueueLease,
        temp_directory: Optional[TempDirectoryManager] = None,
        config: Optional[CompletionConfig] = None,
        sleep=asyncio.sleep,
    ):
        self.job_server = job_server
        self.queue = queue
        self.temp_directory = temp_directory
        self.config = config or CompletionConfig()
        self._sleep = sleep

    async def complete(
        self,
        context: ExecutionContext,
        request: JobRequest,
        result: Optional[TaskResult] = None,
    ) -> TaskResult:
        context.debug(f"Finishing: {request.job_display_name}")
        final = context.complete(result)

        try:
            await self.queue.shutdown(raise_on_failure=True)
        except Exception as e:
            logger.error(f"Caught exception from job server queue shutdown: {e}")
            logger.error(
                "This indicate a failure during publish output variables. "
                "Fail the job to prevent unexpected job outputs."
            )
            final = merge_results(final, TaskResult.FAILED)

        # the queue may still have been uploading files out of the temp directory
        if self.temp_directory is not None:
            self.temp_directory.cleanup_temp_directory()

        if not context.features & PlanFeatures.JOB_COMPLETED_PLAN_EVENT:
            logger.info(
                f"Skip raise job completed event call from worker because Plan version is {request.plan.version}"
            )
            return final

        logger.info("Raising job completed event.")
        event = CompletionEvent(
            request_id=request.request_id,
            job_id=request.job_id,
            result=final,
            outputs=dict(context.outputs),
            environment=dict(context.environment),
        )
        return await self.report(request.plan, event)

    async def report(self, plan: Plan, event: CompletionEvent) -> TaskResult:
        """
        Publish the event, retrying transient failures.

        Returns:
            The event's result once delivered, or FAILED on a terminal rejection

        Raises:
            CompletionPublishError: If every attempt failed
        """
        errors: List[BaseException] = []
        limit = self.config.retry_limit
        for attempt in range(1, limit + 1):
            increment_counter("job.completion.attempts", 1, {"attempt": attempt})
            try:
                outcome = await self.job_server.raise_plan_event(plan, event)
            except Exception as e:
                outcome = PublishOutcome.retryable(e)

            if outcome.delivered:
                return event.result

            if outcome.is_terminal:
                logger.error(
                    f"{outcome.rejection.value} received, while attempting to raise "
                    f"JobCompletedEvent for job {event.job_id}."
                )
                if outcome.cause is not None:
                    logger.error(str(outcome.cause))
                return TaskResult.FAILED

            logger.error(
                f"Catch exception while attempting to raise JobCompletedEvent for job {event.job_id}, "
                f"job request {event.request_id} (attempt {attempt}/{limit})."
            )
            logger.error(str(outcome.cause))
            errors.append(outcome.cause)

            if attempt < limit:
                await self._sleep(self.config.retry_delay)

        raise CompletionPublishError(event.job_id, errors)
