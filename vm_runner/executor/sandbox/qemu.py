"""
QEMU Sandbox Implementation

Boots a per-job QEMU VM through the scripts in the VM tools directory and
mounts the job workspace into it over sshfs.
"""

import asyncio
import logging
import os
import signal
from typing import List, Optional

from vm_runner.config import VirtConfig
from vm_runner.seam_comm.telemetry.metrics import increment_counter
from vm_runner.seam_comm.telemetry.tracer import create_span
from vm_runner.utils.process import ProcessError, collect, spawn

from ..context import ExecutionContext
from .base import EnvironmentHandle, ProvisioningError, SandboxBase
from .readiness import ReadinessScanner

logger = logging.getLogger(__name__)


class QemuSandbox(SandboxBase):
    """
    QEMU VM sandbox driven by run_image.sh and sshfs.sh.

    The boot script writes the VM pid to {virt_dir}/work/{instance}_qemu.pid
    and removes it when the VM exits; teardown relies on that file.
    """

    def __init__(self, config: VirtConfig, sleep=asyncio.sleep):
        self.config = config
        self._sleep = sleep

    def allocate(self, instance_number: int, image_ref: str, workspace_dir: str) -> EnvironmentHandle:
        return EnvironmentHandle(
            instance_number=instance_number,
            image_ref=image_ref,
            workspace_dir=workspace_dir,
            virt_dir=self.config.virt_dir,
            private_ip=self.config.private_ip(instance_number),
            pid_file=self.config.pid_file(instance_number),
        )

    def boot_command(self, handle: EnvironmentHandle) -> List[str]:
        return ["bash", self.config.boot_script, "-n", str(handle.instance_number), "-s", handle.image_tag]

    def mount_command(self, handle: EnvironmentHandle) -> List[str]:
        return ["bash", self.config.mount_script, str(handle.instance_number), handle.workspace_dir]

    def unmount_command(self, handle: EnvironmentHandle) -> List[str]:
        return ["bash", "-e", self.config.mount_script, str(handle.instance_number), handle.workspace_dir]

    async def _spawn(self, argv: List[str]) -> asyncio.subprocess.Process:
        return await spawn(argv, cwd=self.config.virt_dir)

    async def provision(
        self,
        handle: EnvironmentHandle,
        job_context: ExecutionContext,
        vm_context: Optional[ExecutionContext] = None,
    ) -> EnvironmentHandle:
        """
        Boot the VM, then mount the workspace.

        Raises:
            ProvisioningError: If either script fails; the mount is never
                attempted after a failed boot
        """
        if vm_context is None:
            vm_context = job_context.create_child("Set up VM", "VM_Init")
            vm_context.start()

        attributes = {"vm.instance": handle.instance_number, "vm.image": handle.image_ref}
        with create_span("vm.provision", attributes):
            await self._boot(handle, job_context, vm_context)
            await self._mount(handle, job_context)

        handle.provisioned = True
        logger.info(f"VM {handle.instance_number} provisioned at {handle.private_ip}")
        return handle

    async def _boot(self, handle: EnvironmentHandle, job_context: ExecutionContext, vm_context: ExecutionContext):
        if not handle.image_ref:
            message = "The job does not declare a container image to boot"
            job_context.error(message)
            raise ProvisioningError(message)

        argv = self.boot_command(handle)
        try:
            process = await self._spawn(argv)
        except ProcessError as e:
            job_context.error(str(e))
            raise ProvisioningError(str(e)) from e

        handle.vm_process = process
        logger.info(f"Starting QEMU with start script PID {process.pid}")

        # drain stderr alongside stdout so a chatty script cannot block on a full pipe
        stderr_task = asyncio.ensure_future(process.stderr.read())
        try:
            scanner = ReadinessScanner(vm_context.output, self.config.debug_marker)
            try:
                await scanner.scan(process.stdout)
            except (ValueError, asyncio.LimitOverrunError) as e:
                if process.returncode is None:
                    process.kill()
                message = f"Failed to read VM start script output: {e}"
                vm_context.complete()
                job_context.error(message)
                raise ProvisioningError(message) from e
            returncode = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
        finally:
            if not stderr_task.done():
                stderr_task.cancel()

        logger.info("QEMU is ready.")
        vm_context.complete()

        if returncode != 0:
            message = f"VM starter exited with non-zero exit code: {returncode}"
            vm_context.output(message)
            logger.info(message)
            job_context.error(message)
            for line in stderr.splitlines():
                logger.info(line)
            raise ProvisioningError(message, exit_code=returncode, stderr=stderr)

    async def _mount(self, handle: EnvironmentHandle, job_context: ExecutionContext):
        argv = self.mount_command(handle)
        logger.info(f"Mounting {handle.workspace_dir} via sshfs...")
        try:
            process = await self._spawn(argv)
        except ProcessError as e:
            job_context.error(str(e))
            raise ProvisioningError(str(e)) from e

        handle.mount_process = process
        result = await collect(process, argv)
        if result.stdout:
            logger.info(result.stdout)

        if not result.ok:
            logger.error(f"sshfs exited with {result.returncode}")
            logger.error(result.stderr)
            job_context.error(f"sshfs: exit code {result.returncode}, err {result.stderr}")
            raise ProvisioningError(
                f"sshfs exited with {result.returncode}",
                exit_code=result.returncode,
                stderr=result.stderr,
            )

    async def teardown(self, handle: EnvironmentHandle, job_context: Optional[ExecutionContext] = None) -> None:
        """Unmount the workspace and stop the VM. Never raises."""
        if handle.torn_down:
            logger.warning(f"VM {handle.instance_number} already torn down")
            return
        handle.torn_down = True
        increment_counter("job.teardown", 1, {"vm.instance": handle.instance_number})

        try:
            await self._stop_boot_script(handle)
        except Exception as e:
            logger.error(f"Failed to stop the VM start script: {e}")

        vm_pid = self._read_pid(handle)

        try:
            await self._unmount(handle, job_context)
        except Exception as e:
            logger.error(f"Unmounting {handle.workspace_dir} failed: {e}")

        if not vm_pid:
            logger.warning(f"No QEMU PID recorded for instance {handle.instance_number}, nothing to kill")
            return

        try:
            await self._kill_vm(handle, vm_pid)
        except Exception as e:
            logger.error(f"Killing QEMU with PID {vm_pid} failed: {e}")

    async def _stop_boot_script(self, handle: EnvironmentHandle):
        process = handle.vm_process
        if process is None or process.returncode is not None:
            return
        logger.warning(f"VM start script PID {process.pid} still running, killing it")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()

    def _read_pid(self, handle: EnvironmentHandle) -> str:
        try:
            with open(handle.pid_file, "r", encoding="utf-8") as f:
                return f.readline().strip()
        except OSError as e:
            logger.error("Reading QEMU work files failed, consult the exception below.")
            logger.error(str(e))
            return ""

    async def _unmount(self, handle: EnvironmentHandle, job_context: Optional[ExecutionContext]):
        argv = self.unmount_command(handle)
        logger.info(f"Unmounting sshfs from {handle.workspace_dir}")
        try:
            process = await self._spawn(argv)
        except ProcessError as e:
            logger.error(str(e))
            if job_context is not None:
                job_context.error(str(e))
            return

        result = await collect(process, argv)
        if not result.ok:
            message = result.stderr or f"Unmount exited with {result.returncode}"
            logger.error(message)
            if job_context is not None:
                job_context.error(message)

    async def _kill_vm(self, handle: EnvironmentHandle, vm_pid: str):
        logger.info(f"Killing QEMU with PID {vm_pid}")
        self._signal(vm_pid, signal.SIGTERM)

        attempts = self.config.pid_wait_attempts
        for i in range(1, attempts + 1):
            logger.info(f"[{i}/{attempts}] waiting for QEMU to die")
            if not handle.pid_file.exists():
                break

            if i == attempts:
                logger.info(f"Sending SIGKILL to {vm_pid}")
                self._signal(vm_pid, signal.SIGKILL)
                try:
                    handle.pid_file.unlink()
                    logger.info(f"Removed {handle.pid_file}")
                except OSError as e:
                    logger.info(f"Couldn't remove {handle.pid_file}: {e}")
                break

            await self._sleep(self.config.pid_wait_interval)

    def _signal(self, vm_pid: str, sig: signal.Signals):
        try:
            os.kill(int(vm_pid), sig)
        except ValueError:
            logger.error(f"Invalid QEMU PID {vm_pid!r}")
        except OSError as e:
            logger.error(f"Failed to send {sig.name} to {vm_pid}: {e}")
