"""
OpenTelemetry Integration Module

Provides distributed tracing and metrics collection capabilities:
- tracer: tracer setup, lifecycle spans and trace context injection
- metrics: counters and latency histograms
"""

from .metrics import increment_counter, record_latency, setup_metrics
from .tracer import create_span, inject_trace_context, setup_tracer

__all__ = [
    "setup_tracer",
    "setup_metrics",
    "inject_trace_context",
    "create_span",
    "increment_counter",
    "record_latency",
]
