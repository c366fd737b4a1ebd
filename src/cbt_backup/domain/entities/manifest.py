"""Backup metadata documents: manifest, block list and chain entry.

All three are persisted as JSON objects next to the backup's blocks. The
field names on the wire are camelCase; optional fields are omitted when
unset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cbt_backup.domain.value_objects import (
    DEFAULT_BLOCK_SIZE,
    BackupId,
    BlockRange,
    SnapshotHandle,
    VolumeId,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BackupManifest:
    """Immutable summary of one published backup.

    Created once, after every block of the backup has been stored.
    """

    backup_id: BackupId
    volume_id: VolumeId
    volume_size: int
    is_incremental: bool
    total_ranges: int
    total_bytes: int
    block_size: int = DEFAULT_BLOCK_SIZE
    base_backup_id: BackupId | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    namespace: str = ""
    snapshot_name: str = ""
    snapshot_handle: SnapshotHandle | None = None
    snapshot_class_name: str = ""
    csi_driver: str = ""
    volume_mode: str = "Block"
    compressed_size: int | None = None

    def __post_init__(self) -> None:
        if self.is_incremental and not self.base_backup_id:
            raise ValueError("incremental manifest requires base_backup_id")
        if not self.is_incremental and self.base_backup_id:
            raise ValueError("full manifest must not carry base_backup_id")

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "backupID": self.backup_id,
            "volumeID": self.volume_id,
            "namespace": self.namespace,
            "snapshotName": self.snapshot_name,
            "timestamp": self.timestamp.isoformat(),
            "volumeSize": self.volume_size,
            "isIncremental": self.is_incremental,
            "totalRanges": self.total_ranges,
            "totalBytes": self.total_bytes,
            "blockSize": self.block_size,
            "volumeMode": self.volume_mode,
            "csiDriver": self.csi_driver,
            "snapshotClassName": self.snapshot_class_name,
        }
        if self.base_backup_id:
            doc["baseBackupID"] = self.base_backup_id
        if self.snapshot_handle:
            doc["snapshotHandle"] = self.snapshot_handle
        if self.compressed_size is not None:
            doc["compressedSize"] = self.compressed_size
        return doc

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> BackupManifest:
        """Deserialize a manifest document.

        Raises:
            KeyError: If a required field is missing.
        """
        return cls(
            backup_id=BackupId(doc["backupID"]),
            volume_id=VolumeId(doc["volumeID"]),
            volume_size=int(doc["volumeSize"]),
            is_incremental=bool(doc["isIncremental"]),
            total_ranges=int(doc["totalRanges"]),
            total_bytes=int(doc["totalBytes"]),
            block_size=int(doc.get("blockSize", DEFAULT_BLOCK_SIZE)),
            base_backup_id=doc.get("baseBackupID") or None,
            timestamp=datetime.fromisoformat(doc["timestamp"]),
            namespace=doc.get("namespace", ""),
            snapshot_name=doc.get("snapshotName", ""),
            snapshot_handle=doc.get("snapshotHandle") or None,
            snapshot_class_name=doc.get("snapshotClassName", ""),
            csi_driver=doc.get("csiDriver", ""),
            volume_mode=doc.get("volumeMode", "Block"),
            compressed_size=doc.get("compressedSize"),
        )


@dataclass(frozen=True)
class ChainEntry:
    """Dependency record of one backup.

    ``dependencies`` is fully resolved and base-first: a full backup has
    none, an incremental has its base's dependencies followed by the base.
    """

    backup_id: BackupId
    base_backup_id: BackupId | None = None
    dependencies: tuple[BackupId, ...] = ()

    @property
    def is_incremental(self) -> bool:
        return self.base_backup_id is not None

    @classmethod
    def full(cls, backup_id: BackupId) -> ChainEntry:
        return cls(backup_id=backup_id)

    @classmethod
    def incremental(cls, backup_id: BackupId, base: ChainEntry) -> ChainEntry:
        """Build the entry of an incremental backup on top of ``base``."""
        return cls(
            backup_id=backup_id,
            base_backup_id=base.backup_id,
            dependencies=(*base.dependencies, base.backup_id),
        )

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "backupID": self.backup_id,
            "isIncremental": self.is_incremental,
            "dependencies": list(self.dependencies),
        }
        if self.base_backup_id:
            doc["baseBackupID"] = self.base_backup_id
        return doc

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> ChainEntry:
        return cls(
            backup_id=BackupId(doc["backupID"]),
            base_backup_id=doc.get("baseBackupID") or None,
            dependencies=tuple(BackupId(d) for d in doc.get("dependencies", [])),
        )


@dataclass(frozen=True, slots=True)
class BlockRecord:
    """One stored block as listed in a backup's block list."""

    offset: int
    size: int
    checksum: str

    @property
    def range(self) -> BlockRange:
        return BlockRange(self.offset, self.size)


@dataclass
class BlockList:
    """Ordered list of the blocks stored by one backup."""

    blocks: list[BlockRecord] = field(default_factory=list)

    def add(self, block_range: BlockRange, checksum: str) -> None:
        self.blocks.append(BlockRecord(block_range.offset, block_range.size, checksum))

    def sorted(self) -> BlockList:
        """Return a copy ordered by offset."""
        return BlockList(sorted(self.blocks, key=lambda b: b.offset))

    @property
    def total_bytes(self) -> int:
        return sum(b.size for b in self.blocks)

    def __len__(self) -> int:
        return len(self.blocks)

    def __iter__(self):
        return iter(self.blocks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "blocks": [
                {"offset": b.offset, "size": b.size, "checksum": b.checksum}
                for b in self.blocks
            ]
        }

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> BlockList:
        return cls(
            [
                BlockRecord(int(b["offset"]), int(b["size"]), b["checksum"])
                for b in doc.get("blocks") or []
            ]
        )
