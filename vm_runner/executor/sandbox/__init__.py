"""
Sandbox Module

Per-job execution environments. The QEMU sandbox boots one VM per job and
mounts the job workspace into it.
"""

from .base import EnvironmentHandle, ProvisioningError, SandboxBase, SandboxError
from .qemu import QemuSandbox
from .readiness import ReadinessScanner

__all__ = [
    "EnvironmentHandle",
    "ProvisioningError",
    "QemuSandbox",
    "ReadinessScanner",
    "SandboxBase",
    "SandboxError",
]
