"""
Worker entry point

Runs a single job message on this machine's VM instance:

    vm-runner --message job.json --collaborators mypackage.steps:build
"""
import argparse
import asyncio
import importlib
import json
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from vm_runner.config import FileConfigurationStore, RunnerConfig
from vm_runner.executor.cancellation import CancellationToken, ShutdownReason
from vm_runner.executor.interfaces import JobExtension, JobServerQueue, StepsRunner, TempDirectoryManager
from vm_runner.executor.job import JobRequest, TaskResult
from vm_runner.executor.job_runner import JobRunner
from vm_runner.executor.sandbox import QemuSandbox
from vm_runner.executor.security import SecurityGate
from vm_runner.seam_comm.job_server import JobServerClient
from vm_runner.seam_comm.telemetry import setup_metrics, setup_tracer

logger = logging.getLogger(__name__)

SUCCESS_RESULTS = (TaskResult.SUCCEEDED, TaskResult.SUCCEEDED_WITH_ISSUES)


@dataclass
class Collaborators:
    """Services supplied by the hosting runner for one job"""
    queue: JobServerQueue
    job_extension: JobExtension
    steps_runner: StepsRunner
    temp_directory: Optional[TempDirectoryManager] = None


def load_factory(reference: str) -> Callable[[RunnerConfig], Collaborators]:
    """Resolve a 'module:attribute' reference to a collaborators factory."""
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Expected 'module:factory', got {reference!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


def load_message(path: str) -> JobRequest:
    with open(path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)
    return JobRequest.from_dict(data)


def print_job_line(record_name: str, line: str) -> None:
    print(line, flush=True)


def exit_code(result: TaskResult) -> int:
    return 0 if result in SUCCESS_RESULTS else 1


def install_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown: CancellationToken) -> None:
    def on_signal(reason: ShutdownReason):
        logger.info(f"Received shutdown signal, reason {reason.value}")
        shutdown.cancel(reason)

    loop.add_signal_handler(signal.SIGTERM, on_signal, ShutdownReason.OPERATING_SYSTEM_SHUTDOWN)
    loop.add_signal_handler(signal.SIGINT, on_signal, ShutdownReason.USER_CANCELLED)


def build_runner(
    config: RunnerConfig,
    collaborators: Collaborators,
    job_server: JobServerClient,
    shutdown: CancellationToken,
) -> JobRunner:
    return JobRunner(
        config,
        job_server=job_server,
        queue=collaborators.queue,
        sandbox=QemuSandbox(config.virt),
        job_extension=collaborators.job_extension,
        steps_runner=collaborators.steps_runner,
        security_gate=SecurityGate(FileConfigurationStore(config.settings_file)),
        temp_directory=collaborators.temp_directory,
        runner_shutdown=shutdown,
        log_sink=print_job_line,
    )


async def run_job(config: RunnerConfig, request: JobRequest, collaborators: Collaborators) -> TaskResult:
    shutdown = CancellationToken()
    install_signal_handlers(asyncio.get_running_loop(), shutdown)

    job_server = JobServerClient(config.messaging_endpoint, timeout_ms=config.messaging_timeout_ms)
    runner = build_runner(config, collaborators, job_server, shutdown)
    try:
        return await runner.run(request, CancellationToken())
    finally:
        job_server.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one CI job inside a QEMU VM")
    parser.add_argument("--message", required=True, help="Path to the job request message (JSON)")
    parser.add_argument("--collaborators", required=True,
                        help="Factory building the queue, job extension and steps runner, as module:factory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = RunnerConfig.from_env()
    logger.debug(f"Runner configuration: {config.to_dict()}")
    if config.enable_tracing:
        setup_tracer(config.service_name, config.otlp_endpoint)
        setup_metrics(config.service_name, config.otlp_endpoint)

    request = load_message(args.message)
    collaborators = load_factory(args.collaborators)(config)

    result = asyncio.run(run_job(config, request, collaborators))
    logger.info(f"Job finished with result {result.name}")
    return exit_code(result)


if __name__ == "__main__":
    sys.exit(main())
