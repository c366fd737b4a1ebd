"""Core identifiers and size constants for the backup engine.

These value objects give type-safe names to the plain strings that flow
between components so a snapshot name is never passed where a storage
handle is expected.
"""

from __future__ import annotations

import time
from typing import NewType


BackupId = NewType("BackupId", str)
"""Unique identifier of one backup. Defaults to the snapshot name."""

VolumeId = NewType("VolumeId", str)
"""Identity of the source volume (e.g. the PVC name)."""

SnapshotId = NewType("SnapshotId", str)
"""User-facing snapshot object name. Not stable after deletion."""

SnapshotHandle = NewType("SnapshotHandle", str)
"""Storage-backend handle of a snapshot's content.

Bound when the snapshot content is created and valid for delta
computation even after the named snapshot object is deleted.
"""

KiB = 1024
MiB = 1024 * KiB

DEFAULT_BLOCK_SIZE = 1 * MiB
"""Default alignment granularity for backed-up ranges (1MB)."""

MIN_BLOCK_SIZE = 4 * KiB


def generate_backup_id(volume_id: str, now: float | None = None) -> BackupId:
    """Generate a backup name for a volume when none is given.

    Args:
        volume_id: Source volume identity.
        now: Unix time to embed (defaults to the current time).

    Returns:
        A name of the form ``<volume>-snapshot-<unix seconds>``.
    """
    stamp = int(now if now is not None else time.time())
    return BackupId(f"{volume_id}-snapshot-{stamp}")
