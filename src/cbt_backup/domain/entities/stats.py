"""Per-operation statistics for reporting.

Stats are ephemeral: they are returned to the caller (and logged) but
never stored with the backup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from cbt_backup.domain.value_objects import MiB


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _throughput_mb_s(num_bytes: int, seconds: float) -> float:
    if seconds <= 0:
        return 0.0
    return (num_bytes / MiB) / seconds


@dataclass
class BackupStats:
    """Statistics about one backup operation."""

    start_time: datetime = field(default_factory=_utcnow)
    end_time: datetime | None = None
    bytes_read: int = 0
    bytes_uploaded: int = 0
    blocks_read: int = 0
    blocks_uploaded: int = 0
    blocks_skipped: int = 0  # already present with identical content
    compression_ratio: float = 1.0
    is_incremental: bool = False
    base_backup_id: str | None = None
    cbt_enabled: bool = True
    published: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or _utcnow()
        return (end - self.start_time).total_seconds()

    @property
    def average_block_size(self) -> int:
        if self.blocks_read == 0:
            return 0
        return self.bytes_read // self.blocks_read

    @property
    def upload_throughput(self) -> float:
        """Upload throughput in MB/s."""
        return _throughput_mb_s(self.bytes_uploaded, self.duration_seconds)

    def finish(self) -> None:
        self.end_time = _utcnow()


@dataclass
class RestoreStats:
    """Statistics about one restore operation.

    ``complete`` stays False unless every chain member was applied and the
    destination was flushed. A False value after a failure means the
    destination device holds a partial, inconsistent image.
    """

    start_time: datetime = field(default_factory=_utcnow)
    end_time: datetime | None = None
    bytes_downloaded: int = 0
    bytes_written: int = 0
    blocks_downloaded: int = 0
    blocks_written: int = 0
    backups_applied: int = 0
    checksum_verified: int = 0
    checksum_failed: int = 0
    complete: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or _utcnow()
        return (end - self.start_time).total_seconds()

    @property
    def average_block_size(self) -> int:
        if self.blocks_written == 0:
            return 0
        return self.bytes_written // self.blocks_written

    @property
    def restore_throughput(self) -> float:
        """Restore throughput in MB/s."""
        return _throughput_mb_s(self.bytes_written, self.duration_seconds)

    def finish(self) -> None:
        self.end_time = _utcnow()
