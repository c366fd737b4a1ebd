"""OpenTelemetry tracing for backup and restore runs.

Spans wrap a whole backup or restore and each restored chain member.
When a span exits with a CBTBackupError, the error's context (step,
offset, chain member) is copied onto the span as ``error.*`` attributes.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from cbt_backup.domain.errors import CBTBackupError


TRACER_NAME = "cbt_backup"

_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str = "cbt-backup",
    otlp_endpoint: str | None = None,
    console_export: bool = False,
    environment: str | None = None,
) -> trace.Tracer:
    """
    Install a tracer provider for this process.

    With neither an OTLP endpoint nor console export, spans are created
    but never exported.

    Args:
        service_name: Reported as ``service.name``
        otlp_endpoint: gRPC OTLP collector, e.g. "http://otel-collector:4317"
        console_export: Also print finished spans to stdout
        environment: Reported as ``deployment.environment``

    Returns:
        The tracer used by ``trace_span``
    """
    global _tracer

    from cbt_backup import __version__

    resource_attributes = {
        "service.name": service_name,
        "service.version": __version__,
    }
    if environment:
        resource_attributes["deployment.environment"] = environment

    provider = TracerProvider(resource=Resource.create(resource_attributes))
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)

    _tracer = trace.get_tracer(TRACER_NAME, __version__)
    return _tracer


def get_tracer() -> trace.Tracer:
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(TRACER_NAME)
    return _tracer


def _record_failure(span: trace.Span, error: CBTBackupError) -> None:
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.set_attribute("error.type", type(error).__name__)
    for key, value in error.context.items():
        if isinstance(value, (str, bool, int, float)):
            span.set_attribute(f"error.{key}", value)


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """
    Run the enclosed block inside a span.

    Args:
        name: Span name, e.g. "backup.create" or "restore.apply_member"
        attributes: Span attributes; entries whose value is None are skipped

    Yields:
        The active span
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except CBTBackupError as e:
            _record_failure(span, e)
            raise
