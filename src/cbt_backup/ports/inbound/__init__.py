"""Inbound ports - API contracts for the backup engine.

Inbound ports define the interfaces that the CLI and other callers use
to create backups, restore volumes and inspect the catalog.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Protocol

from cbt_backup.domain.entities import (
    BackupManifest,
    BackupStats,
    CatalogRecord,
    RestorePlan,
    RestoreStats,
)
from cbt_backup.domain.value_objects import BackupId, SnapshotHandle, VolumeId


# =============================================================================
# Backup Service Port
# =============================================================================


@dataclass(frozen=True)
class BackupRequest:
    """Parameters of one backup.

    Attributes:
        volume_id: Source volume identity.
        backup_id: Identity of the new backup.
        snapshot_handle: Storage handle of the target snapshot.
        device_path: Device or image holding the target snapshot's content.
        base_backup_id: Published backup to diff against. None for a full backup.
        snapshot_name: Name of the target snapshot, recorded in the manifest.
    """

    volume_id: VolumeId
    backup_id: BackupId
    snapshot_handle: SnapshotHandle
    device_path: str
    base_backup_id: BackupId | None = None
    snapshot_name: str = ""

    @property
    def is_incremental(self) -> bool:
        return self.base_backup_id is not None


@dataclass(frozen=True)
class BackupResult:
    """Outcome of a successful backup."""

    manifest: BackupManifest
    stats: BackupStats


class BackupServicePort(Protocol):
    """Protocol for producing backups.

    Atomicity:
        A backup is visible in the catalog only after all of its blocks
        are stored. A failed backup leaves no catalog entry.

    Example:
        result = engine.create_backup(BackupRequest(...))
        print(result.manifest.total_ranges)
    """

    @abstractmethod
    def create_backup(self, request: BackupRequest) -> BackupResult:
        """Run one full or incremental backup.

        Raises:
            CBTBackupError: Any taxonomy error, with context attached.
        """
        ...


# =============================================================================
# Restore Service Port
# =============================================================================


class RestoreServicePort(Protocol):
    """Protocol for reconstructing a volume from a backup chain.

    Example:
        plan = engine.plan(backup_id)
        stats = engine.restore(backup_id, "/dev/xvdb")
    """

    @abstractmethod
    def plan(self, backup_id: BackupId) -> RestorePlan:
        """Resolve the chain and size of a restore without writing."""
        ...

    @abstractmethod
    def restore(self, backup_id: BackupId, device_path: str) -> RestoreStats:
        """Replay the chain of ``backup_id`` onto ``device_path``.

        Raises:
            CBTBackupError: On failure. The raised error's ``stats``
                attribute holds RestoreStats with ``complete=False``.
        """
        ...


# =============================================================================
# Catalog Port
# =============================================================================


class CatalogPort(Protocol):
    """Protocol for reading published backups."""

    @abstractmethod
    def get(self, backup_id: BackupId) -> CatalogRecord:
        """Raises BackupNotFoundError when absent."""
        ...

    @abstractmethod
    def list_volume(self, volume_id: VolumeId) -> list[CatalogRecord]:
        """Published backups of a volume in creation order."""
        ...

    @abstractmethod
    def list_all(self) -> list[CatalogRecord]:
        ...


__all__ = [
    "BackupRequest",
    "BackupResult",
    "BackupServicePort",
    "RestoreServicePort",
    "CatalogPort",
]
