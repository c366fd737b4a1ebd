"""Configuration management for the backup engine."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cbt_backup.domain.value_objects import DEFAULT_BLOCK_SIZE, MIN_BLOCK_SIZE


class StorageConfig(BaseModel):
    """Object storage configuration."""

    endpoint: str = Field(
        default="minio.cbt-demo.svc.cluster.local:9000",
        description="S3 endpoint (host:port or URL), or file:///path for a local directory",
    )
    access_key: str = Field(default="minioadmin", description="S3 access key")
    secret_key: str = Field(default="minioadmin123", description="S3 secret key")
    bucket: str = Field(default="snapshots", min_length=1, description="Bucket name")
    use_ssl: bool = Field(default=False, description="Use TLS for S3")
    region: str = Field(default="us-east-1", description="S3 region")

    @property
    def is_local(self) -> bool:
        return self.endpoint.startswith("file://")

    @property
    def local_path(self) -> Path:
        return Path(self.endpoint[len("file://") :])

    @property
    def endpoint_url(self) -> str:
        """Endpoint as a URL, adding the scheme implied by ``use_ssl``."""
        if "://" in self.endpoint:
            return self.endpoint
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.endpoint}"


class BackupConfig(BaseModel):
    """Backup and restore pipeline configuration."""

    block_size: int = Field(
        default=DEFAULT_BLOCK_SIZE, ge=MIN_BLOCK_SIZE, description="Block size in bytes (default 1MB)"
    )
    max_workers: int = Field(default=4, ge=1, le=64, description="Transfer worker threads")
    max_in_flight: int = Field(
        default=16, ge=1, description="Maximum pending block transfers"
    )
    max_results: int = Field(
        default=0, ge=0, description="Ranges per discovery batch (0 = server decides)"
    )
    operation_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Deadline for a whole backup or restore"
    )

    @field_validator("block_size")
    @classmethod
    def _block_size_aligned(cls, v: int) -> int:
        if v % MIN_BLOCK_SIZE:
            raise ValueError(f"block_size must be a multiple of {MIN_BLOCK_SIZE}")
        return v


class SnapshotConfig(BaseModel):
    """Snapshot orchestration configuration."""

    namespace: str = Field(default="default", description="Namespace of the volume")
    snapshot_class: str = Field(
        default="csi-hostpath-snapclass", description="VolumeSnapshotClass name"
    )
    csi_driver: str = Field(default="hostpath.csi.k8s.io", description="CSI driver name")
    ready_timeout_seconds: float = Field(
        default=300, gt=0, description="Wait for snapshot readiness"
    )
    poll_interval_seconds: float = Field(
        default=5, gt=0, description="Readiness poll interval"
    )
    snapshot_dir: Path = Field(
        default=Path("/var/lib/cbt-backup/snapshots"),
        description="Content directory of the host-path snapshot driver",
    )
    delta_granularity: int = Field(
        default=64 * 1024, ge=512, description="Chunk size used to compute deltas"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="console", description="Log format")
    otlp_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="cbt-backup", description="Service name for tracing")
    metrics_port: int | None = Field(
        default=None, ge=1, le=65535, description="Prometheus metrics port (disabled if unset)"
    )
    environment: str = Field(default="development", description="Deployment environment")


class Config(BaseSettings):
    """Main configuration for the backup engine."""

    model_config = SettingsConfigDict(
        env_prefix="CBT_BACKUP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
