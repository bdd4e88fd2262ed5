"""
ZeroMQ Adapter Package

JSON-RPC 2.0 client over ZeroMQ used to reach the orchestration service.
"""

from vm_runner.seam_comm.adapters.zeromq.client import ZeroMQClient

__all__ = ["ZeroMQClient"]
