"""Restore engine: replay a backup chain onto a device.

Chain members are applied strictly in order, base first. Within one
member, blocks are fetched, verified and written in parallel; members
never overlap in time, so a later member's version of a range always
wins. The destination is flushed after every member.

A failed restore leaves the destination partially written. The raised
error carries RestoreStats with ``complete=False`` so the caller knows
the device is inconsistent.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from cbt_backup.adapters.outbound.block_device import BlockDeviceWriter
from cbt_backup.application.transfer import run_bounded
from cbt_backup.domain.entities import BlockRecord, RestorePlan, RestoreStats
from cbt_backup.domain.errors import BlockIntegrityError, CBTBackupError
from cbt_backup.domain.services import CancellationToken, Catalog, ChainResolver
from cbt_backup.domain.value_objects import BackupId, BlockPayload
from cbt_backup.infrastructure.logging import get_logger
from cbt_backup.infrastructure.metrics import BackupMetrics, get_metrics
from cbt_backup.infrastructure.tracing import trace_span
from cbt_backup.ports.outbound import BlockWriterPort


logger = get_logger("restore_engine")

WriterFactory = Callable[..., BlockWriterPort]


class RestoreEngine:
    """Restores volumes from the catalog (implements RestoreServicePort)."""

    def __init__(
        self,
        catalog: Catalog,
        writer_factory: WriterFactory = BlockDeviceWriter,
        max_workers: int = 4,
        max_in_flight: int = 16,
        metrics: BackupMetrics | None = None,
        timeout: float | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be at least 1, got {max_in_flight}")
        self._catalog = catalog
        self._store = catalog.store
        self._chains = ChainResolver(catalog)
        self._writer_factory = writer_factory
        self._max_workers = max_workers
        self._max_in_flight = max_in_flight
        self._metrics = metrics or get_metrics()
        self._timeout = timeout

    def plan(self, backup_id: BackupId) -> RestorePlan:
        """Resolve the chain and transfer size without writing.

        Raises:
            BackupNotFoundError: If the backup is not published.
            ChainIntegrityError: If the chain is broken.
        """
        return self._chains.plan_restore(backup_id)

    def restore(
        self,
        backup_id: BackupId,
        device_path: str,
        token: CancellationToken | None = None,
        create: bool = False,
    ) -> RestoreStats:
        """Replay the chain of ``backup_id`` onto ``device_path``.

        Args:
            backup_id: Backup to restore.
            device_path: Destination device or image file.
            token: Cancellation token (defaults to one with the engine timeout).
            create: Create the destination if it is a missing image file.

        Raises:
            CBTBackupError: On failure, with ``stats.complete`` False.
        """
        token = token or CancellationToken(self._timeout)
        stats = RestoreStats()
        log = logger.bind(backup_id=backup_id, device=device_path)
        started = time.perf_counter()
        step = "plan"
        member: BackupId | None = None
        writer: BlockWriterPort | None = None

        self._metrics.operations_active.labels("restore").inc()
        try:
            with trace_span("restore", {"restore.target": backup_id, "restore.device": device_path}):
                plan = self.plan(backup_id)
                log.info(
                    "restore_started",
                    chain=list(plan.source_backups),
                    volume_size=plan.volume_size,
                    total_bytes=plan.total_bytes,
                    blocks=plan.block_count,
                )

                step = "open_device"
                writer = self._writer_factory(device_path, size=plan.volume_size, create=create)

                for member in plan.source_backups:
                    step = "apply"
                    token.raise_if_cancelled()
                    with trace_span("restore.apply_member", {"restore.member": member}):
                        self._apply_member(member, writer, stats, token)
                    step = "sync"
                    writer.sync()
                    stats.backups_applied += 1
                    log.info("restore_member_applied", member=member, applied=stats.backups_applied)

                step = "close"
                member = None
                writer.close()
                writer = None
                stats.complete = True

        except CBTBackupError as e:
            stats.complete = False
            stats.errors.append(str(e))
            stats.finish()
            e.with_context(step=step, backup_id=backup_id)
            if member is not None:
                e.with_context(chain_member=member)
            e.stats = stats
            self._metrics.restores_total.labels("failed").inc()
            self._metrics.errors_total.labels("restore", type(e).__name__).inc()
            log.error(
                "restore_aborted",
                step=step,
                chain_member=member,
                error=str(e),
                error_type=type(e).__name__,
                backups_applied=stats.backups_applied,
                blocks_written=stats.blocks_written,
            )
            raise
        finally:
            if writer is not None:
                self._close_quietly(writer, log)
            self._metrics.operations_active.labels("restore").dec()
            self._metrics.operation_duration_seconds.labels("restore").observe(
                time.perf_counter() - started
            )

        stats.finish()
        self._metrics.restores_total.labels("complete").inc()
        log.info(
            "restore_completed",
            backups_applied=stats.backups_applied,
            blocks_written=stats.blocks_written,
            bytes_written=stats.bytes_written,
            duration_seconds=round(stats.duration_seconds, 3),
            throughput_mb_s=round(stats.restore_throughput, 2),
        )
        return stats

    def _apply_member(
        self,
        member: BackupId,
        writer: BlockWriterPort,
        stats: RestoreStats,
        token: CancellationToken,
    ) -> None:
        block_list = self._catalog.get_block_list(member)

        def fetch_and_write(record: BlockRecord) -> BlockPayload:
            token.raise_if_cancelled()
            started = time.perf_counter()
            try:
                payload = self._store.get_block(member, record.range, record.checksum)
            except CBTBackupError as e:
                raise e.with_context(step="fetch", offset=record.offset)
            try:
                writer.write_range(payload)
            except CBTBackupError as e:
                raise e.with_context(step="write", offset=record.offset)
            self._metrics.block_transfer_seconds.labels("restore").observe(
                time.perf_counter() - started
            )
            return payload

        def record_written(payload: BlockPayload) -> None:
            size = payload.range.size
            stats.blocks_downloaded += 1
            stats.bytes_downloaded += size
            stats.checksum_verified += 1
            stats.blocks_written += 1
            stats.bytes_written += size
            self._metrics.blocks_restored_total.inc()
            self._metrics.bytes_restored_total.inc(size)

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="cbt-restore"
        ) as pool:
            try:
                run_bounded(
                    pool,
                    block_list.sorted(),
                    fetch_and_write,
                    record_written,
                    self._max_in_flight,
                    token,
                )
            except BlockIntegrityError:
                stats.checksum_failed += 1
                self._metrics.integrity_errors_total.inc()
                raise

    @staticmethod
    def _close_quietly(writer: BlockWriterPort, log) -> None:
        # Already failing; the original error is the one to report.
        try:
            writer.close()
        except (CBTBackupError, OSError) as e:
            log.warning("device_close_failed", error=str(e))
