"""Value objects for the backup domain.

Exports:
    Identifiers:
        - BackupId, VolumeId, SnapshotId, SnapshotHandle
        - DEFAULT_BLOCK_SIZE, MIN_BLOCK_SIZE, KiB, MiB
        - generate_backup_id: default backup naming

    Blocks:
        - BlockRange: byte range of a volume
        - BlockPayload: checksummed data for a range
        - compute_checksum: SHA-256 hex digest
"""

from cbt_backup.domain.value_objects.block_range import (
    BlockPayload,
    BlockRange,
    compute_checksum,
)
from cbt_backup.domain.value_objects.identifiers import (
    DEFAULT_BLOCK_SIZE,
    KiB,
    MIN_BLOCK_SIZE,
    MiB,
    BackupId,
    SnapshotHandle,
    SnapshotId,
    VolumeId,
    generate_backup_id,
)

__all__ = [
    # Identifiers
    "BackupId",
    "VolumeId",
    "SnapshotId",
    "SnapshotHandle",
    "DEFAULT_BLOCK_SIZE",
    "MIN_BLOCK_SIZE",
    "KiB",
    "MiB",
    "generate_backup_id",
    # Blocks
    "BlockRange",
    "BlockPayload",
    "compute_checksum",
]
