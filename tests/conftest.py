"""
Shared fixtures for the job runner tests
"""
import asyncio
import copy

import pytest

from vm_runner.config import RunnerConfig, VirtConfig
from vm_runner.executor.job import JobRequest

REQUEST_DATA = {
    "jobId": "job-1",
    "requestId": 42,
    "jobDisplayName": "build",
    "plan": {
        "scopeIdentifier": "scope-1",
        "planType": "actions",
        "planId": "plan-1",
        "version": 9,
        "features": ["JobCompletedPlanEvent"],
    },
    "steps": [{"name": "checkout"}, {"name": "test"}],
    "variables": {},
    "resources": {
        "endpoints": [
            {
                "name": "SystemVssConnection",
                "url": "tcp://orchestrator:5555",
                "authorization": {"scheme": "OAuth", "token": "secret"},
            }
        ]
    },
    "contextData": {
        "github": {"event_name": "push", "repository": "octo/hello"},
    },
    "jobContainer": "ubuntu:22.04",
}


def _pull_request_github(login="mallory", association="CONTRIBUTOR", event_name="pull_request"):
    return {
        "event_name": event_name,
        "repository": "octo/hello",
        "event": {
            "pull_request": {
                "author_association": association,
                "head": {"user": {"login": login}},
            }
        },
    }


@pytest.fixture
def make_request():
    """Build a JobRequest from the default message with top-level overrides"""
    def _make(**overrides):
        data = copy.deepcopy(REQUEST_DATA)
        data.update(overrides)
        return JobRequest.from_dict(data)
    return _make


@pytest.fixture
def job_request(make_request):
    return make_request()


@pytest.fixture
def virt_config(tmp_path):
    virt_dir = tmp_path / "virt"
    (virt_dir / "work").mkdir(parents=True)
    return VirtConfig(virt_dir=virt_dir)


@pytest.fixture
def runner_config(tmp_path, virt_config):
    return RunnerConfig(root_dir=tmp_path / "runner", virt=virt_config)


class FakeProcess:
    """Stands in for asyncio.subprocess.Process with canned output"""

    def __init__(self, stdout_lines=(), stderr=b"", returncode=0, pid=4242):
        self.pid = pid
        self.stdout = asyncio.StreamReader()
        for line in stdout_lines:
            self.stdout.feed_data(line.encode("utf-8") + b"\n")
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        if stderr:
            self.stderr.feed_data(stderr)
        self.stderr.feed_eof()
        self.returncode = None
        self.killed = False
        self._exit_code = returncode

    async def wait(self):
        self.returncode = self._exit_code
        return self.returncode

    async def communicate(self):
        stdout = await self.stdout.read()
        stderr = await self.stderr.read()
        self.returncode = self._exit_code
        return stdout, stderr

    def kill(self):
        self.killed = True
        self._exit_code = -9


@pytest.fixture
def fake_process():
    """Factory for FakeProcess; call it inside a running event loop"""
    return FakeProcess


@pytest.fixture
def pull_request_github():
    """Factory for a pull request github context"""
    return _pull_request_github


@pytest.fixture
def request_data():
    """The default job request message"""
    return copy.deepcopy(REQUEST_DATA)
