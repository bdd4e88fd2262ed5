"""
Job Executor Module

Runs one job request inside a freshly booted VM and reports the result.

Key Components:
- JobRunner: Lifecycle from provisioning to teardown
- Sandbox: QEMU VM provisioning, readiness scanning and teardown
- Security: Pull request policy gate
- Completion: Result merging and completion event publication
"""

from .job import JobRequest, TaskResult
from .job_runner import JobRunner, JobState

__all__ = ["JobRequest", "JobRunner", "JobState", "TaskResult"]
__version__ = "0.1.0"
