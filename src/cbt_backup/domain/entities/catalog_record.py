"""Catalog records and restore plans."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from cbt_backup.domain.entities.manifest import BackupManifest, ChainEntry
from cbt_backup.domain.value_objects import BackupId


class BackupState(Enum):
    """Lifecycle of a catalog record.

    PENDING records are invisible to chain resolution. PUBLISHED is
    terminal.
    """

    PENDING = "pending"
    PUBLISHED = "published"


@dataclass(frozen=True)
class CatalogRecord:
    """A published manifest together with its chain entry."""

    manifest: BackupManifest
    chain: ChainEntry
    state: BackupState = BackupState.PUBLISHED

    @property
    def backup_id(self) -> BackupId:
        return self.manifest.backup_id


@dataclass(frozen=True)
class RestorePlan:
    """What a restore of ``target`` needs, computed before writing anything.

    Attributes:
        target: Backup to restore.
        source_backups: Ordered chain, base first, target last.
        volume_size: Size of the volume at the target backup.
        total_bytes: Bytes to transfer across all chain members.
        block_count: Blocks to transfer across all chain members.
    """

    target: BackupId
    source_backups: tuple[BackupId, ...]
    volume_size: int
    total_bytes: int
    block_count: int
