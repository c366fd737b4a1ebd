"""Backup engine: discover, read, store, publish.

Produces one full or incremental backup of a snapshot. Ranges flow
lazily from discovery through a bounded worker pool that reads each
range from the device and stores it. The backup is published to the
catalog only after every block has been stored; any failure before that
leaves no catalog entry.

Blocks stored by a failed backup stay in object storage as orphans.
They are unreachable from the catalog and are left for garbage
collection.

References:
    - CSI SnapshotMetadata service
    - ChangeSetResolver / BlockStore / Catalog
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from cbt_backup.adapters.outbound.block_device import BlockDeviceReader
from cbt_backup.application.transfer import run_bounded
from cbt_backup.domain.entities import (
    BackupManifest,
    BackupStats,
    BlockList,
    CatalogRecord,
    ChainEntry,
)
from cbt_backup.domain.errors import (
    BlockIntegrityError,
    CBTBackupError,
    ChainIntegrityError,
    SnapshotNotBoundError,
)
from cbt_backup.domain.services import (
    CancellationToken,
    Catalog,
    ChangedRangeStream,
    ChangeSetResolver,
)
from cbt_backup.domain.value_objects import BlockPayload, BlockRange
from cbt_backup.infrastructure.logging import get_logger
from cbt_backup.infrastructure.metrics import BackupMetrics, get_metrics
from cbt_backup.infrastructure.tracing import trace_span
from cbt_backup.ports.inbound import BackupRequest, BackupResult
from cbt_backup.ports.outbound import BlockReaderPort


logger = get_logger("backup_engine")

ReaderFactory = Callable[[str], BlockReaderPort]


class BackupEngine:
    """Creates backups (implements BackupServicePort).

    Example:
        engine = BackupEngine(resolver, catalog, max_workers=4)
        result = engine.create_backup(BackupRequest(...))
    """

    def __init__(
        self,
        resolver: ChangeSetResolver,
        catalog: Catalog,
        reader_factory: ReaderFactory = BlockDeviceReader,
        max_workers: int = 4,
        max_in_flight: int = 16,
        metrics: BackupMetrics | None = None,
        namespace: str = "",
        snapshot_class: str = "",
        csi_driver: str = "",
        timeout: float | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            resolver: Change-set discovery.
            catalog: Catalog receiving published backups.
            reader_factory: Opens the snapshot device for reading.
            max_workers: Concurrent block transfers.
            max_in_flight: Ranges discovered but not yet stored.
            metrics: Metrics registry (defaults to the global one).
            namespace: Recorded in manifests.
            snapshot_class: Recorded in manifests.
            csi_driver: Recorded in manifests.
            timeout: Default deadline in seconds for one backup.
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be at least 1, got {max_in_flight}")
        self._resolver = resolver
        self._catalog = catalog
        self._store = catalog.store
        self._reader_factory = reader_factory
        self._max_workers = max_workers
        self._max_in_flight = max_in_flight
        self._metrics = metrics or get_metrics()
        self._namespace = namespace
        self._snapshot_class = snapshot_class
        self._csi_driver = csi_driver
        self._timeout = timeout

    def create_backup(
        self,
        request: BackupRequest,
        token: CancellationToken | None = None,
    ) -> BackupResult:
        """Run one backup to completion.

        Raises:
            CBTBackupError: Any taxonomy error. ``context`` names the step
                and ``stats`` holds the statistics gathered so far.
        """
        token = token or CancellationToken(self._timeout)
        mode = "incremental" if request.is_incremental else "full"
        stats = BackupStats(
            is_incremental=request.is_incremental,
            base_backup_id=request.base_backup_id,
        )
        log = logger.bind(backup_id=request.backup_id, volume_id=request.volume_id, mode=mode)
        log.info("backup_started", base_backup_id=request.base_backup_id)

        started = time.perf_counter()
        reserved = False
        step = "reserve"
        self._metrics.operations_active.labels("backup").inc()
        try:
            with trace_span(
                "backup.create",
                {
                    "backup.id": request.backup_id,
                    "backup.volume": request.volume_id,
                    "backup.mode": mode,
                    "backup.base": request.base_backup_id,
                },
            ):
                self._catalog.begin(request.backup_id)
                reserved = True

                step = "resolve_base"
                base = self._resolve_base(request)

                step = "discover"
                if base is None:
                    stream = self._resolver.discover(request.snapshot_handle, token)
                else:
                    stream = self._resolver.discover_delta(
                        base.manifest.snapshot_handle, request.snapshot_handle, token
                    )
                stream.open()

                step = "transfer"
                reader = self._reader_factory(request.device_path)
                try:
                    volume_size = reader.size()
                    with trace_span("backup.transfer", {"backup.id": request.backup_id}):
                        block_list = self._transfer(request, stream, reader, stats, token)
                finally:
                    reader.close()

                step = "publish"
                token.raise_if_cancelled()
                chain = (
                    ChainEntry.incremental(request.backup_id, base.chain)
                    if base is not None
                    else ChainEntry.full(request.backup_id)
                )
                manifest = BackupManifest(
                    backup_id=request.backup_id,
                    volume_id=request.volume_id,
                    volume_size=stream.volume_capacity or volume_size,
                    is_incremental=base is not None,
                    total_ranges=len(block_list),
                    total_bytes=block_list.total_bytes,
                    block_size=self._resolver.block_size,
                    base_backup_id=request.base_backup_id,
                    namespace=self._namespace,
                    snapshot_name=request.snapshot_name or request.backup_id,
                    snapshot_handle=request.snapshot_handle,
                    snapshot_class_name=self._snapshot_class,
                    csi_driver=self._csi_driver,
                )
                self._catalog.publish(manifest, chain, block_list)
                stats.published = True

        except CBTBackupError as e:
            stats.errors.append(str(e))
            stats.finish()
            e.with_context(step=step, backup_id=request.backup_id)
            e.stats = stats
            self._metrics.backups_total.labels(mode, "failed").inc()
            self._metrics.errors_total.labels("backup", type(e).__name__).inc()
            log.error(
                "backup_failed",
                step=step,
                error=str(e),
                error_type=type(e).__name__,
                orphan_blocks=stats.blocks_uploaded,
            )
            raise
        finally:
            if reserved and not stats.published:
                self._catalog.abandon(request.backup_id)
            self._metrics.operations_active.labels("backup").dec()
            self._metrics.operation_duration_seconds.labels("backup").observe(
                time.perf_counter() - started
            )

        stats.finish()
        self._metrics.backups_total.labels(mode, "published").inc()
        log.info(
            "backup_published",
            ranges=manifest.total_ranges,
            bytes=manifest.total_bytes,
            blocks_uploaded=stats.blocks_uploaded,
            blocks_skipped=stats.blocks_skipped,
            duration_seconds=round(stats.duration_seconds, 3),
            throughput_mb_s=round(stats.upload_throughput, 2),
        )
        return BackupResult(manifest=manifest, stats=stats)

    def _resolve_base(self, request: BackupRequest) -> CatalogRecord | None:
        """Look up the published base of an incremental backup.

        Raises:
            BackupNotFoundError: If the base is not published.
            ChainIntegrityError: If the base belongs to another volume.
            SnapshotNotBoundError: If the base recorded no snapshot handle.
        """
        if request.base_backup_id is None:
            return None
        if request.base_backup_id == request.backup_id:
            raise ChainIntegrityError("a backup cannot be its own base", backup_id=request.backup_id)

        base = self._catalog.get(request.base_backup_id)
        if base.manifest.volume_id != request.volume_id:
            raise ChainIntegrityError(
                f"base backup {base.backup_id} belongs to volume {base.manifest.volume_id}",
                base_backup_id=base.backup_id,
                volume_id=request.volume_id,
            )
        if not base.manifest.snapshot_handle:
            raise SnapshotNotBoundError(
                f"base backup {base.backup_id} recorded no snapshot handle",
                base_backup_id=base.backup_id,
            )
        return base

    def _transfer(
        self,
        request: BackupRequest,
        stream: ChangedRangeStream,
        reader: BlockReaderPort,
        stats: BackupStats,
        token: CancellationToken,
    ) -> BlockList:
        block_list = BlockList()
        mode = "incremental" if request.is_incremental else "full"

        def upload(block_range: BlockRange) -> tuple[BlockPayload, bool]:
            token.raise_if_cancelled()
            started = time.perf_counter()
            try:
                payload = reader.read_range(block_range)
            except CBTBackupError as e:
                raise e.with_context(step="read", offset=block_range.offset)
            try:
                stored = self._store.put_block(request.backup_id, payload)
            except CBTBackupError as e:
                raise e.with_context(step="store", offset=block_range.offset)
            self._metrics.block_transfer_seconds.labels("upload").observe(
                time.perf_counter() - started
            )
            return payload, stored

        def record(result: tuple[BlockPayload, bool]) -> None:
            payload, stored = result
            block_list.add(payload.range, payload.checksum)
            stats.blocks_read += 1
            stats.bytes_read += payload.range.size
            self._metrics.ranges_discovered_total.labels(mode).inc()
            if stored:
                stats.blocks_uploaded += 1
                stats.bytes_uploaded += payload.range.size
                self._metrics.blocks_uploaded_total.inc()
                self._metrics.bytes_uploaded_total.inc(payload.range.size)
            else:
                stats.blocks_skipped += 1
                self._metrics.blocks_skipped_total.inc()

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="cbt-backup"
        ) as pool:
            try:
                run_bounded(pool, stream, upload, record, self._max_in_flight, token)
            except BlockIntegrityError:
                self._metrics.integrity_errors_total.inc()
                raise

        return block_list
