"""
OpenTelemetry Trace Context Management

Configures the tracer, opens spans around job lifecycle stages and injects the
current trace context into outgoing RPC requests.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import propagate, trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ALWAYS_ON

logger = logging.getLogger(__name__)


def setup_tracer(service_name: str, otlp_endpoint: str = "localhost:4317"):
    """Configure OpenTelemetry tracer

    Args:
        service_name: Service name
        otlp_endpoint: OTLP receiver address
    """
    provider = TracerProvider(
        sampler=ALWAYS_ON,
        resource=Resource.create({"service.name": service_name}),
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    trace.set_tracer_provider(provider)

    logger.info(f"OpenTelemetry trace configured, service name: {service_name}, OTLP endpoint: {otlp_endpoint}")

    return trace.get_tracer(service_name)


def inject_trace_context() -> Optional[Dict[str, str]]:
    """Inject the current trace context into a transportable dictionary

    Returns:
        W3C trace context headers (traceparent, tracestate), or None if no span is active
    """
    carrier: Dict[str, str] = {}
    propagate.inject(carrier)
    return carrier or None


def create_span(name: str, attributes: Dict[str, Any] = None):
    """Create new span

    Args:
        name: Span name
        attributes: Span attributes

    Returns:
        Context manager yielding the span
    """
    tracer = trace.get_tracer(__name__)
    return tracer.start_as_current_span(
        name,
        attributes=attributes or {},
        kind=trace.SpanKind.INTERNAL,
    )
