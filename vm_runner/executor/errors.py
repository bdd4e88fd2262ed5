"""
Executor Errors
"""

from typing import List


class ExecutorError(Exception):
    """Base exception for executor-related errors."""
    pass


class JobCancelledError(ExecutorError):
    """Raised at a cancellation checkpoint once the job has been cancelled."""
    pass


class CompletionPublishError(ExecutorError):
    """Every attempt to publish the job completed event failed."""

    def __init__(self, job_id: str, errors: List[BaseException]):
        self.job_id = job_id
        self.errors = list(errors)
        causes = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(
            f"Failed to raise job completed event for job {job_id} "
            f"after {len(self.errors)} attempts: {causes}"
        )
