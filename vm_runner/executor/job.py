"""
Job Messages

Job request, plan reference and completion event types exchanged with the
orchestration service.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SYSTEM_CONNECTION_NAME = "SystemVssConnection"


class TaskResult(enum.IntEnum):
    """Job result, ordered from best to worst."""
    SUCCEEDED = 0
    SUCCEEDED_WITH_ISSUES = 1
    FAILED = 2
    CANCELED = 3
    SKIPPED = 4
    ABANDONED = 5


def merge_results(current: Optional[TaskResult], coming: TaskResult) -> TaskResult:
    """
    Merge a new result into the current one.

    A result worse than FAILED is final; otherwise the more severe of the two
    wins. A FAILED result never merges back up to SUCCEEDED.
    """
    if current is None:
        return coming
    if current > TaskResult.FAILED:
        return current
    if coming >= current:
        return coming
    return current


class PlanFeatures(enum.IntFlag):
    NONE = 0
    JOB_COMPLETED_PLAN_EVENT = 1

    @classmethod
    def parse(cls, value: Any) -> "PlanFeatures":
        if isinstance(value, int):
            return cls(value)
        # JobCompletedPlanEvent and job_completed_plan_event name the same flag
        by_key = {name.replace("_", "").lower(): member for name, member in cls.__members__.items()}
        features = cls.NONE
        for name in value or []:
            member = by_key.get(str(name).replace("_", "").lower())
            if member is not None:
                features |= member
        return features


@dataclass(frozen=True)
class Plan:
    scope_identifier: str
    plan_type: str
    plan_id: str
    version: int = 0
    features: PlanFeatures = PlanFeatures.NONE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        return cls(
            scope_identifier=str(data.get("scopeIdentifier", "")),
            plan_type=str(data.get("planType", "")),
            plan_id=str(data.get("planId", "")),
            version=int(data.get("version", 0)),
            features=PlanFeatures.parse(data.get("features")),
        )


@dataclass
class ServiceEndpoint:
    name: str
    url: str
    authorization: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceEndpoint":
        return cls(
            name=data.get("name", ""),
            url=data.get("url", ""),
            authorization=dict(data.get("authorization") or {}),
        )


@dataclass
class JobResources:
    endpoints: List[ServiceEndpoint] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobResources":
        return cls(endpoints=[ServiceEndpoint.from_dict(e) for e in data.get("endpoints", [])])


@dataclass
class JobRequest:
    """A job assigned to this runner."""
    job_id: str
    request_id: int
    plan: Plan
    steps: Optional[List[Dict[str, Any]]]
    variables: Optional[Dict[str, Any]]
    resources: Optional[JobResources]
    context_data: Dict[str, Any] = field(default_factory=dict)
    job_container: Any = None
    job_display_name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRequest":
        resources = data.get("resources")
        return cls(
            job_id=str(data["jobId"]),
            request_id=int(data.get("requestId", 0)),
            plan=Plan.from_dict(data.get("plan") or {}),
            steps=data.get("steps"),
            variables=data.get("variables"),
            resources=JobResources.from_dict(resources) if resources is not None else None,
            context_data=dict(data.get("contextData") or {}),
            job_container=data.get("jobContainer"),
            job_display_name=data.get("jobDisplayName", ""),
        )

    @property
    def github(self) -> Dict[str, Any]:
        return self.context_data.get("github") or {}

    @property
    def container_image(self) -> Optional[str]:
        container = self.job_container
        if isinstance(container, dict):
            container = container.get("image")
        return str(container) if container else None

    def system_connection(self) -> ServiceEndpoint:
        matches = [
            e for e in self.resources.endpoints
            if e.name.lower() == SYSTEM_CONNECTION_NAME.lower()
        ]
        if len(matches) != 1:
            raise ValueError(
                f"Expected exactly one {SYSTEM_CONNECTION_NAME} endpoint, found {len(matches)}"
            )
        return matches[0]

    def validate(self) -> None:
        for name in ("resources", "variables", "steps"):
            if getattr(self, name) is None:
                raise ValueError(f"Job request {self.job_id} is missing '{name}'")


@dataclass(frozen=True)
class CompletionEvent:
    request_id: int
    job_id: str
    result: TaskResult
    outputs: Dict[str, Any] = field(default_factory=dict)
    environment: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": "JobCompleted",
            "requestId": self.request_id,
            "jobId": self.job_id,
            "result": self.result.name.lower(),
            "outputs": dict(self.outputs),
            "actionsEnvironment": dict(self.environment),
        }


class RejectionKind(enum.Enum):
    """Rejections of a plan event that no retry can fix."""
    PLAN_NOT_FOUND = "PlanNotFound"
    PLAN_SECURITY_VIOLATION = "PlanSecurityViolation"
    PLAN_TERMINATED = "PlanTerminated"


@dataclass(frozen=True)
class PublishOutcome:
    """Result of one attempt to publish a plan event."""
    delivered: bool
    rejection: Optional[RejectionKind] = None
    cause: Optional[BaseException] = None

    @classmethod
    def ok(cls) -> "PublishOutcome":
        return cls(delivered=True)

    @classmethod
    def terminal(cls, kind: RejectionKind, cause: Optional[BaseException] = None) -> "PublishOutcome":
        return cls(delivered=False, rejection=kind, cause=cause)

    @classmethod
    def retryable(cls, cause: BaseException) -> "PublishOutcome":
        return cls(delivered=False, cause=cause)

    @property
    def is_terminal(self) -> bool:
        return self.rejection is not None
