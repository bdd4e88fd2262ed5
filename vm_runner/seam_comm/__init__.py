"""
Orchestration service messaging (Seam)

Carries plan events from the worker to the orchestration service:

1. Communication Semantics: JSON-RPC 2.0 requests
2. Adapters: ZeroMQ REQ client with timeout recovery
3. Job server: plan event publication with classified outcomes

Requests carry OpenTelemetry trace context for cross-service tracing.
"""

__version__ = "0.1.0"
