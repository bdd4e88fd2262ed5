"""
VM job runner

Runs CI jobs inside per-job QEMU virtual machines and reports their results
to the orchestration service.
"""

__version__ = "0.1.0"
