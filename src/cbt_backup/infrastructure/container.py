"""Dependency injection container for the backup engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

import structlog
from opentelemetry import trace

from cbt_backup.adapters.outbound.hostpath_driver import HostPathSnapshotDriver
from cbt_backup.adapters.outbound.local_object_storage import LocalObjectStorage
from cbt_backup.adapters.outbound.s3_object_storage import S3ObjectStorage
from cbt_backup.application.backup_engine import BackupEngine
from cbt_backup.application.coordinator import BackupCoordinator
from cbt_backup.application.restore_engine import RestoreEngine
from cbt_backup.domain.services import BlockStore, Catalog, ChangeSetResolver
from cbt_backup.infrastructure.config import Config, StorageConfig, get_config
from cbt_backup.infrastructure.logging import setup_logging
from cbt_backup.infrastructure.metrics import BackupMetrics, get_metrics, setup_metrics
from cbt_backup.infrastructure.tracing import setup_tracing
from cbt_backup.ports.outbound import ObjectStoragePort


def create_object_storage(config: StorageConfig) -> ObjectStoragePort:
    """Local directory for ``file://`` endpoints, S3 otherwise."""
    if config.is_local:
        return LocalObjectStorage(config.local_path, config.bucket)
    return S3ObjectStorage.from_config(config)


@dataclass
class Container:
    """Dependency injection container for backup engine components."""

    config: Config
    logger: structlog.stdlib.BoundLogger
    tracer: trace.Tracer
    metrics: BackupMetrics
    storage: ObjectStoragePort
    catalog: Catalog
    snapshot_driver: HostPathSnapshotDriver
    backup_engine: BackupEngine
    restore_engine: RestoreEngine
    coordinator: BackupCoordinator

    _instance: ClassVar[Container | None] = None

    @classmethod
    def create(cls, config: Config | None = None) -> Container:
        """Create and initialize the container with all dependencies."""
        if cls._instance is not None:
            return cls._instance

        config = config or get_config()
        obs = config.observability
        logger = setup_logging(obs.log_level, obs.log_format)
        tracer = setup_tracing(
            obs.otel_service_name, obs.otlp_endpoint, environment=obs.environment
        )
        metrics = setup_metrics(obs.metrics_port) if obs.metrics_port else get_metrics()

        storage = create_object_storage(config.storage)
        storage.ensure_bucket()
        catalog = Catalog(BlockStore(storage))

        snapshot_driver = HostPathSnapshotDriver(
            config.snapshot.snapshot_dir,
            granularity=config.snapshot.delta_granularity,
            poll_interval=config.snapshot.poll_interval_seconds,
            csi_driver=config.snapshot.csi_driver,
        )

        backup = config.backup
        backup_engine = BackupEngine(
            ChangeSetResolver(snapshot_driver, backup.block_size, backup.max_results),
            catalog,
            max_workers=backup.max_workers,
            max_in_flight=backup.max_in_flight,
            metrics=metrics,
            namespace=config.snapshot.namespace,
            snapshot_class=config.snapshot.snapshot_class,
            csi_driver=config.snapshot.csi_driver,
            timeout=backup.operation_timeout_seconds,
        )
        restore_engine = RestoreEngine(
            catalog,
            max_workers=backup.max_workers,
            max_in_flight=backup.max_in_flight,
            metrics=metrics,
            timeout=backup.operation_timeout_seconds,
        )
        coordinator = BackupCoordinator(
            snapshot_driver,
            backup_engine,
            snapshot_class=config.snapshot.snapshot_class,
            ready_timeout=config.snapshot.ready_timeout_seconds,
        )

        cls._instance = cls(
            config=config,
            logger=logger,
            tracer=tracer,
            metrics=metrics,
            storage=storage,
            catalog=catalog,
            snapshot_driver=snapshot_driver,
            backup_engine=backup_engine,
            restore_engine=restore_engine,
            coordinator=coordinator,
        )

        logger.info(
            "cbt_backup_container_initialized",
            environment=obs.environment,
            bucket=config.storage.bucket,
            storage="local" if config.storage.is_local else "s3",
            block_size=backup.block_size,
            max_workers=backup.max_workers,
        )

        return cls._instance

    @classmethod
    def get(cls) -> Container:
        """Get the singleton container instance."""
        if cls._instance is None:
            return cls.create()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the container (useful for testing)."""
        cls._instance = None


def get_container() -> Container:
    """Get the dependency injection container."""
    return Container.get()
