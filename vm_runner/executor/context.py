"""
Execution Context

Job-level record of issues, live log output, runner context values and the
accumulated result.
"""

import enum
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from .cancellation import CancellationToken
from .job import JobRequest, TaskResult, merge_results

logger = logging.getLogger(__name__)


class IssueType(enum.Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class Issue:
    type: IssueType
    message: str


class ExecutionContext:
    """
    Tracks one job (or one named child record of it, such as "Set up VM").

    Lines written with output() go to the live log sink; issues and debug
    messages are kept on the context and mirrored to the runner log.
    """

    def __init__(
        self,
        request: JobRequest,
        cancellation: Optional[CancellationToken] = None,
        display_name: str = "",
        ref_name: str = "",
        log_sink: Optional[Callable[[str, str], None]] = None,
        parent: Optional["ExecutionContext"] = None,
    ):
        self.id = str(uuid.uuid4())
        self.request = request
        self.cancellation = cancellation or CancellationToken()
        self.display_name = display_name or request.job_display_name
        self.ref_name = ref_name
        self.parent = parent
        self._log_sink = log_sink

        self.result: Optional[TaskResult] = None
        self.issues: List[Issue] = []
        self.lines: List[str] = []
        self.outputs: Dict[str, Any] = {}
        self.environment: Dict[str, Any] = {}
        self.runner_context: Dict[str, str] = {}
        self.job_steps: Deque[Any] = deque()
        self.children: List["ExecutionContext"] = []
        self.started = False
        self.completed = False

    @property
    def features(self):
        return self.request.plan.features

    @property
    def write_debug(self) -> bool:
        variables = self.request.variables or {}
        for name in ("system.debug", "ACTIONS_STEP_DEBUG"):
            value = variables.get(name)
            if isinstance(value, dict):
                value = value.get("value")
            if str(value).lower() == "true":
                return True
        return False

    def start(self) -> None:
        self.started = True
        logger.debug(f"Started context '{self.display_name}' ({self.id})")

    def create_child(self, display_name: str, ref_name: str) -> "ExecutionContext":
        child = ExecutionContext(
            self.request,
            cancellation=self.cancellation,
            display_name=display_name,
            ref_name=ref_name,
            log_sink=self._log_sink,
            parent=self,
        )
        self.children.append(child)
        return child

    def output(self, line: str) -> None:
        self.lines.append(line)
        if self._log_sink is not None:
            self._log_sink(self.ref_name or self.display_name, line)

    def debug(self, message: str) -> None:
        logger.debug(f"[{self.display_name}] {message}")

    def add_issue(self, issue: Issue) -> None:
        self.issues.append(issue)
        self.output(f"##[{issue.type.value}]{issue.message}")
        if issue.type is IssueType.ERROR:
            logger.error(f"[{self.display_name}] {issue.message}")
        else:
            logger.warning(f"[{self.display_name}] {issue.message}")

    def error(self, message: Any) -> None:
        self.add_issue(Issue(IssueType.ERROR, str(message)))

    def warning(self, message: Any) -> None:
        self.add_issue(Issue(IssueType.WARNING, str(message)))

    def set_runner_context(self, name: str, value: str) -> None:
        self.runner_context[name] = value

    def merge_result(self, result: TaskResult) -> TaskResult:
        self.result = merge_results(self.result, result)
        return self.result

    def complete(self, result: Optional[TaskResult] = None) -> TaskResult:
        """Close the context and return its final result."""
        if result is not None:
            self.merge_result(result)
        self.completed = True
        final = self.result if self.result is not None else TaskResult.SUCCEEDED
        logger.debug(f"Completed context '{self.display_name}' with result {final.name}")
        return final
