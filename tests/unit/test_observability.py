"""Unit tests for logging, tracing and metrics setup."""

from __future__ import annotations

import io
import json
import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from cbt_backup.domain.errors import BlockIntegrityError
from cbt_backup.infrastructure import tracing
from cbt_backup.infrastructure.logging import get_logger, setup_logging
from cbt_backup.infrastructure.metrics import BackupMetrics


@pytest.fixture
def spans(monkeypatch: pytest.MonkeyPatch) -> InMemorySpanExporter:
    """Route trace_span into an in-memory exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(tracing, "_tracer", provider.get_tracer("test"))
    return exporter


@pytest.mark.unit
class TestTracing:
    """Tests for trace_span."""

    def test_attributes_skip_none(self, spans: InMemorySpanExporter) -> None:
        """None-valued attributes are not set."""
        with tracing.trace_span("backup.create", {"backup.id": "b1", "backup.base": None}):
            pass

        (span,) = spans.get_finished_spans()
        assert span.name == "backup.create"
        assert span.attributes["backup.id"] == "b1"
        assert "backup.base" not in span.attributes

    def test_error_context_recorded(self, spans: InMemorySpanExporter) -> None:
        """A failing span carries the error type and context."""
        with pytest.raises(BlockIntegrityError):
            with tracing.trace_span("restore.apply_member", {"restore.member": "b1"}):
                raise BlockIntegrityError("checksum mismatch", offset=4096, step="fetch")

        (span,) = spans.get_finished_spans()
        assert span.status.status_code is StatusCode.ERROR
        assert span.attributes["error.type"] == "BlockIntegrityError"
        assert span.attributes["error.offset"] == 4096
        assert span.attributes["error.step"] == "fetch"


@pytest.mark.unit
class TestLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_events_carry_service_and_trace(self, spans: InMemorySpanExporter) -> None:
        """JSON output includes the service name and the active trace ID."""
        stream = io.StringIO()
        setup_logging("INFO", "json", stream=stream)

        with tracing.trace_span("backup.create"):
            get_logger("backup_engine").info("backup_started", backup_id="b1")

        event = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert event["event"] == "backup_started"
        assert event["backup_id"] == "b1"
        assert event["component"] == "backup_engine"
        assert event["service"] == "cbt-backup"
        assert len(event["trace_id"]) == 32

    def test_stdlib_records_share_renderer(self) -> None:
        """Adapter loggers render through the same JSON formatter."""
        stream = io.StringIO()
        setup_logging("DEBUG", "json", stream=stream)
        logging.getLogger("cbt_backup.adapters.outbound.block_device").debug(
            "Short read at offset %d", 4096
        )

        event = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert event["event"] == "Short read at offset 4096"
        assert event["level"] == "debug"

    def test_third_party_loggers_quieted(self) -> None:
        """boto noise is raised to WARNING."""
        setup_logging("DEBUG", "console", stream=io.StringIO())
        assert logging.getLogger("botocore").level == logging.WARNING


@pytest.mark.unit
class TestMetrics:
    """Tests for BackupMetrics."""

    def test_counters_on_private_registry(self, metrics: BackupMetrics) -> None:
        """Each test gets isolated counters."""
        metrics.backups_total.labels("incremental", "published").inc()
        metrics.bytes_uploaded_total.inc(1024)

        registry = metrics.registry
        assert registry.get_sample_value(
            "cbt_backups_total", {"mode": "incremental", "status": "published"}
        ) == 1
        assert registry.get_sample_value("cbt_bytes_uploaded_total") == 1024
