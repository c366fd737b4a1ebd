"""Infrastructure layer - cross-cutting concerns."""

from cbt_backup.infrastructure.config import Config, get_config
from cbt_backup.infrastructure.logging import get_logger, setup_logging
from cbt_backup.infrastructure.metrics import BackupMetrics, get_metrics, setup_metrics
from cbt_backup.infrastructure.tracing import get_tracer, setup_tracing, trace_span

__all__ = [
    "Config",
    "get_config",
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "BackupMetrics",
    "setup_tracing",
    "get_tracer",
    "trace_span",
]
