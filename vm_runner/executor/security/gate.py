"""
Security Gate

Decides whether a pull request job may run on this worker.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from vm_runner.config import PullRequestSecuritySettings

logger = logging.getLogger(__name__)

PULL_REQUEST_EVENTS = ("pull_request", "pull_request_target")


@dataclass(frozen=True)
class SecurityDecision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def _mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise TypeError(f"Expected '{name}' to be a mapping, got {type(value).__name__}")
    return value


def is_pull_request(trigger_context: Mapping[str, Any]) -> bool:
    return _mapping(trigger_context, "github").get("event_name") in PULL_REQUEST_EVENTS


class SecurityGate:
    """
    Pull request policy check.

    Jobs that were not triggered by a pull request always pass. Any failure
    to read the trigger context or the policy denies the job.
    """

    def __init__(self, config_store=None):
        self.config_store = config_store

    def check(self, trigger_context: Optional[Dict[str, Any]]) -> SecurityDecision:
        """Evaluate a job against the policy from the configuration store."""
        try:
            if not is_pull_request(trigger_context):
                return SecurityDecision(True, "Not a pull request")
            settings = self.config_store.get_settings() if self.config_store is not None else None
            policy = settings.pull_request_security if settings is not None else None
        except Exception as e:
            return self._deny_on_error(e)
        return self.evaluate(trigger_context, policy)

    def evaluate(
        self,
        trigger_context: Optional[Dict[str, Any]],
        policy: Optional[PullRequestSecuritySettings],
    ) -> SecurityDecision:
        try:
            if not is_pull_request(trigger_context):
                return SecurityDecision(True, "Not a pull request")
            return self._evaluate_pull_request(trigger_context, policy)
        except Exception as e:
            return self._deny_on_error(e)

    def _deny_on_error(self, error: Exception) -> SecurityDecision:
        logger.error("Caught exception while checking pull request security restrictions")
        logger.error("As a safety precaution we are not allowing this job to run")
        logger.error(f"{type(error).__name__}: {error}")
        return SecurityDecision(False, f"Unable to read pull request details: {error}")

    def _evaluate_pull_request(
        self,
        trigger_context: Mapping[str, Any],
        policy: Optional[PullRequestSecuritySettings],
    ) -> SecurityDecision:
        if policy is None:
            logger.info("No pullRequestSecurity defined in settings, allowing this build")
            return SecurityDecision(True, "No pull request security policy configured")

        event = _mapping(trigger_context["event"], "event")
        pull_request = _mapping(event["pull_request"], "pull_request")
        association = pull_request.get("author_association")

        if association == "OWNER":
            logger.info("PR is from the repo owner, always allowed")
            return SecurityDecision(True, "Author is the repository owner")

        if policy.allow_contributors and association == "COLLABORATOR":
            logger.info("PR is from the repo collaborator, allowing")
            return SecurityDecision(True, "Author is a repository collaborator")

        head = _mapping(pull_request["head"], "head")
        user = _mapping(head["user"], "user")
        login = user.get("login")
        logger.info(f"GitHub PR author is {login}")

        if not login:
            logger.info("Unable to get PR author, not allowing PR to run")
            return SecurityDecision(False, "Unable to determine the pull request author")

        if login in policy.allowed_authors:
            logger.info("Author in PR allowed list")
            return SecurityDecision(True, f"Author {login} is in the allowed list")

        allowed = ", ".join(policy.allowed_authors)
        logger.info(f"Not running job as author ({login}) is not in {{{allowed}}}")
        return SecurityDecision(False, f"Author {login} is not allowed to run jobs on this worker")
