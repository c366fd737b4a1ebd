"""Prometheus metrics for the backup engine."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class BackupMetrics:
    """Registry of all backup engine metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Operation metrics
        self.backups_total = Counter(
            "cbt_backups_total",
            "Total backup operations",
            ["mode", "status"],  # mode: full, incremental; status: published, failed
            registry=self._registry,
        )

        self.restores_total = Counter(
            "cbt_restores_total",
            "Total restore operations",
            ["status"],  # complete, failed
            registry=self._registry,
        )

        self.operation_duration_seconds = Histogram(
            "cbt_operation_duration_seconds",
            "Backup and restore duration in seconds",
            ["operation"],  # backup, restore
            buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0),
            registry=self._registry,
        )

        self.operations_active = Gauge(
            "cbt_operations_active",
            "Backups and restores currently running",
            ["operation"],
            registry=self._registry,
        )

        # Block transfer metrics
        self.blocks_uploaded_total = Counter(
            "cbt_blocks_uploaded_total",
            "Blocks written to object storage",
            registry=self._registry,
        )

        self.blocks_skipped_total = Counter(
            "cbt_blocks_skipped_total",
            "Blocks already present with identical content",
            registry=self._registry,
        )

        self.bytes_uploaded_total = Counter(
            "cbt_bytes_uploaded_total",
            "Bytes written to object storage",
            registry=self._registry,
        )

        self.blocks_restored_total = Counter(
            "cbt_blocks_restored_total",
            "Blocks written to destination devices",
            registry=self._registry,
        )

        self.bytes_restored_total = Counter(
            "cbt_bytes_restored_total",
            "Bytes written to destination devices",
            registry=self._registry,
        )

        self.block_transfer_seconds = Histogram(
            "cbt_block_transfer_seconds",
            "Time to read and store, or fetch and write, one block",
            ["direction"],  # upload, restore
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
            registry=self._registry,
        )

        # Discovery metrics
        self.ranges_discovered_total = Counter(
            "cbt_ranges_discovered_total",
            "Changed ranges produced by discovery",
            ["mode"],
            registry=self._registry,
        )

        # Error metrics
        self.integrity_errors_total = Counter(
            "cbt_integrity_errors_total",
            "Blocks that failed checksum verification",
            registry=self._registry,
        )

        self.errors_total = Counter(
            "cbt_errors_total",
            "Operation failures by error type",
            ["operation", "error"],
            registry=self._registry,
        )

        # Engine info
        self.info = Info(
            "cbt_backup",
            "Backup engine information",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry


_metrics: BackupMetrics | None = None


def setup_metrics(port: int = 9102, registry: CollectorRegistry | None = None) -> BackupMetrics:
    """Create the process metrics and expose them on ``port`` for scraping."""
    global _metrics
    _metrics = BackupMetrics(registry)

    from cbt_backup import __version__
    _metrics.info.info({
        "version": __version__,
    })

    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> BackupMetrics:
    """Process metrics, created unexported on first use."""
    global _metrics
    if _metrics is None:
        _metrics = BackupMetrics()
    return _metrics
