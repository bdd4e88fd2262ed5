"""
Communication Adapters Module

Client adapters for reaching the orchestration service. ZeroMQ carries
JSON-RPC 2.0 requests with OpenTelemetry trace context injected.
"""

from .adapter_factory import AdapterFactory, AdapterType
from .adapter_interface import ClientAdapterInterface

__all__ = [
    "AdapterFactory",
    "AdapterType",
    "ClientAdapterInterface",
]
