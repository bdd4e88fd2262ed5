"""
Configuration settings for the VM job runner
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class PullRequestSecuritySettings:
    """Which pull request authors may run jobs on this worker"""
    allow_contributors: bool = False
    allowed_authors: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PullRequestSecuritySettings":
        allow_contributors = data.get("allowContributors", data.get("allow_contributors", False))
        allowed_authors = data.get("allowedAuthors", data.get("allowed_authors")) or []
        return cls(
            allow_contributors=bool(allow_contributors),
            allowed_authors=[str(author) for author in allowed_authors],
        )


@dataclass
class RunnerSettings:
    """Settings written when the runner was registered"""
    agent_name: str = ""
    pool_name: str = ""
    pull_request_security: Optional[PullRequestSecuritySettings] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunnerSettings":
        pr_data = data.get("pullRequestSecurity", data.get("pull_request_security"))
        return cls(
            agent_name=data.get("agentName", data.get("agent_name", "")),
            pool_name=data.get("poolName", data.get("pool_name", "")),
            pull_request_security=(
                PullRequestSecuritySettings.from_dict(pr_data) if pr_data is not None else None
            ),
        )


class FileConfigurationStore:
    """Reads runner settings from the JSON settings file"""

    def __init__(self, settings_file: Path):
        self.settings_file = Path(settings_file)
        self._settings: Optional[RunnerSettings] = None

    def get_settings(self) -> RunnerSettings:
        if self._settings is None:
            if self.settings_file.exists():
                data = json.loads(self.settings_file.read_text(encoding="utf-8-sig"))
                self._settings = RunnerSettings.from_dict(data)
            else:
                logger.info(f"No settings file at {self.settings_file}, using defaults")
                self._settings = RunnerSettings()
        return self._settings


@dataclass
class VirtConfig:
    """Configuration for the VM tools directory and its scripts"""
    virt_dir: Path
    instance_number: int = 1
    subnet: str = "172.17"
    debug_marker: str = "DEBUG START"
    boot_script: str = "run_image.sh"
    mount_script: str = "sshfs.sh"
    pid_wait_attempts: int = 5
    pid_wait_interval: float = 1.0

    def private_ip(self, instance_number: Optional[int] = None) -> str:
        number = self.instance_number if instance_number is None else instance_number
        return f"{self.subnet}.{number}.2"

    def pid_file(self, instance_number: Optional[int] = None) -> Path:
        number = self.instance_number if instance_number is None else instance_number
        return self.virt_dir / "work" / f"{number}_qemu.pid"


@dataclass
class CompletionConfig:
    """Retry policy for the job completed event"""
    retry_limit: int = 5
    retry_delay: float = 5.0


@dataclass
class RunnerConfig:
    """Main configuration for the job runner"""
    root_dir: Path
    virt: VirtConfig
    completion: CompletionConfig = field(default_factory=CompletionConfig)

    # Messaging configuration
    messaging_endpoint: Optional[str] = None  # defaults to the system connection url
    messaging_timeout_ms: int = 30000

    # Tracing configuration
    enable_tracing: bool = False
    service_name: str = "vm-runner"
    otlp_endpoint: str = "localhost:4317"

    @property
    def work_dir(self) -> Path:
        return self.root_dir / "_work"

    @property
    def tools_dir(self) -> Path:
        return self.work_dir / "_tool"

    @property
    def settings_file(self) -> Path:
        return self.root_dir / ".runner"

    @classmethod
    def from_env(cls) -> "RunnerConfig":
        """Create config from environment variables"""
        root_dir = Path(os.getenv("VM_RUNNER_ROOT", os.getcwd())).resolve()
        # the VM tooling lives beside the runner root
        virt_dir = Path(os.getenv("VM_RUNNER_VIRT_DIR", str(root_dir.parent / "virt")))
        return cls(
            root_dir=root_dir,
            virt=VirtConfig(
                virt_dir=virt_dir,
                instance_number=int(os.getenv("VM_RUNNER_INSTANCE", "1")),
                subnet=os.getenv("VM_RUNNER_SUBNET", "172.17"),
            ),
            completion=CompletionConfig(
                retry_limit=int(os.getenv("VM_RUNNER_COMPLETE_RETRIES", "5")),
                retry_delay=float(os.getenv("VM_RUNNER_COMPLETE_DELAY", "5")),
            ),
            messaging_endpoint=os.getenv("VM_RUNNER_MESSAGING_ENDPOINT"),
            enable_tracing=os.getenv("VM_RUNNER_TRACING", "").lower() in ("1", "true", "yes"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "localhost:4317"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for diagnostics"""
        return {
            "root_dir": str(self.root_dir),
            "work_dir": str(self.work_dir),
            "virt_dir": str(self.virt.virt_dir),
            "instance_number": self.virt.instance_number,
            "private_ip": self.virt.private_ip(),
            "completion_retry_limit": self.completion.retry_limit,
            "completion_retry_delay": self.completion.retry_delay,
            "messaging_endpoint": self.messaging_endpoint,
            "enable_tracing": self.enable_tracing,
        }
