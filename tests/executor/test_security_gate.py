"""
Tests for the pull request security gate
"""
from unittest.mock import Mock, patch

import pytest

from vm_runner.config import PullRequestSecuritySettings, RunnerSettings
from vm_runner.executor.security import SecurityGate


def store_with(policy):
    store = Mock()
    store.get_settings.return_value = RunnerSettings(pull_request_security=policy)
    return store


@pytest.fixture
def gate():
    return SecurityGate()


class TestNonPullRequest:
    """Jobs not triggered by a pull request always pass"""

    @pytest.mark.parametrize("event_name", ["push", "workflow_dispatch", "schedule", None])
    def test_allowed(self, gate, event_name):
        policy = PullRequestSecuritySettings()
        assert gate.evaluate({"event_name": event_name}, policy).allowed

    def test_store_not_consulted(self):
        store = store_with(PullRequestSecuritySettings())
        assert SecurityGate(store).check({"event_name": "push"}).allowed
        store.get_settings.assert_not_called()


class TestPullRequestPolicy:
    """Owner, collaborator and allow-list rules, in that order"""

    def test_no_policy_allows(self, gate, pull_request_github):
        assert gate.evaluate(pull_request_github(), None).allowed

    def test_owner_always_allowed(self, gate, pull_request_github):
        policy = PullRequestSecuritySettings(allow_contributors=False, allowed_authors=[])
        assert gate.evaluate(pull_request_github("octo", "OWNER"), policy).allowed

    def test_collaborator_allowed_when_contributors_allowed(self, gate, pull_request_github):
        policy = PullRequestSecuritySettings(allow_contributors=True)
        assert gate.evaluate(pull_request_github("alice", "COLLABORATOR"), policy).allowed

    def test_collaborator_denied_when_contributors_not_allowed(self, gate, pull_request_github):
        policy = PullRequestSecuritySettings(allow_contributors=False)
        decision = gate.evaluate(pull_request_github("alice", "COLLABORATOR"), policy)
        assert not decision.allowed
        assert "alice" in decision.reason

    def test_allow_contributors_does_not_cover_contributor(self, gate, pull_request_github):
        policy = PullRequestSecuritySettings(allow_contributors=True)
        assert not gate.evaluate(pull_request_github("bob", "CONTRIBUTOR"), policy).allowed

    def test_allowed_author(self, gate, pull_request_github):
        policy = PullRequestSecuritySettings(allowed_authors=["carol", "dave"])
        assert gate.evaluate(pull_request_github("dave"), policy).allowed

    def test_unlisted_author_denied(self, gate, pull_request_github):
        policy = PullRequestSecuritySettings(allowed_authors=["carol"])
        assert not gate.evaluate(pull_request_github("mallory"), policy).allowed

    def test_pull_request_target_is_checked(self, gate, pull_request_github):
        policy = PullRequestSecuritySettings()
        github = pull_request_github("mallory", event_name="pull_request_target")
        assert not gate.evaluate(github, policy).allowed

    def test_missing_login_denied(self, gate, pull_request_github):
        policy = PullRequestSecuritySettings(allowed_authors=[""])
        assert not gate.evaluate(pull_request_github(""), policy).allowed


class TestFailClosed:
    """Anything unreadable denies the job"""

    def test_missing_event_denied(self, gate):
        policy = PullRequestSecuritySettings()
        decision = gate.evaluate({"event_name": "pull_request"}, policy)
        assert not decision.allowed
        assert decision.reason.startswith("Unable to read pull request details")

    def test_malformed_head_denied(self, gate, pull_request_github):
        github = pull_request_github()
        github["event"]["pull_request"]["head"] = "not-a-mapping"
        assert not gate.evaluate(github, PullRequestSecuritySettings()).allowed

    def test_missing_trigger_context_denied(self, gate):
        assert not gate.check(None).allowed

    def test_settings_read_failure_denied(self, pull_request_github):
        store = Mock()
        store.get_settings.side_effect = ValueError("bad settings file")
        decision = SecurityGate(store).check(pull_request_github("octo", "OWNER"))
        assert not decision.allowed
        assert "bad settings file" in decision.reason


class TestCheckWithStore:

    def test_policy_read_from_store(self, pull_request_github):
        gate = SecurityGate(store_with(PullRequestSecuritySettings(allowed_authors=["erin"])))
        assert gate.check(pull_request_github("erin"))
        assert not gate.check(pull_request_github("frank"))

    def test_store_without_policy_allows(self, pull_request_github):
        assert SecurityGate(store_with(None)).check(pull_request_github("frank")).allowed

    def test_check_uses_stored_policy_for_evaluation(self, pull_request_github):
        policy = PullRequestSecuritySettings(allowed_authors=["erin"])
        gate = SecurityGate(store_with(policy))
        github = pull_request_github("erin")

        with patch.object(gate, "evaluate", wraps=gate.evaluate) as evaluate:
            assert gate.check(github).allowed

        evaluate.assert_called_once_with(github, policy)
