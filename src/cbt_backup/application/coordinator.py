"""Application coordinator for snapshot-driven backups.

Orchestrates the full workflow behind ``cbt-backup create``:
- Snapshot the volume and wait for it to become ready
- Resolve the snapshot's storage handle
- Run the backup engine against the snapshot content
"""

from __future__ import annotations

import logging

from cbt_backup.application.backup_engine import BackupEngine
from cbt_backup.domain.errors import CBTBackupError, SnapshotNotBoundError
from cbt_backup.domain.services import CancellationToken
from cbt_backup.domain.value_objects import BackupId, SnapshotId, VolumeId
from cbt_backup.ports.inbound import BackupRequest, BackupResult
from cbt_backup.ports.outbound import SnapshotLifecyclePort


logger = logging.getLogger(__name__)


class BackupCoordinator:
    """Takes a snapshot of a volume and backs it up."""

    def __init__(
        self,
        snapshots: SnapshotLifecyclePort,
        engine: BackupEngine,
        snapshot_class: str,
        ready_timeout: float = 300,
    ) -> None:
        self._snapshots = snapshots
        self._engine = engine
        self._snapshot_class = snapshot_class
        self._ready_timeout = ready_timeout

    def backup_volume(
        self,
        volume_id: VolumeId,
        snapshot_name: str | None = None,
        base_backup_id: BackupId | None = None,
        device_path: str | None = None,
        token: CancellationToken | None = None,
    ) -> BackupResult:
        """Snapshot ``volume_id`` and back the snapshot up.

        The backup ID is the snapshot name.

        Args:
            volume_id: Volume to back up.
            snapshot_name: Snapshot name; generated when None.
            base_backup_id: Published backup for an incremental, or None.
            device_path: Where the snapshot content is readable. Defaults
                to the path reported by the snapshot driver.
            token: Cancels the readiness wait and the backup.

        Raises:
            CBTBackupError: From any step, with ``step`` in its context.
        """
        kind = f"incremental from {base_backup_id}" if base_backup_id else "full"
        logger.info(f"Starting {kind} backup of {volume_id}")

        step = "create_snapshot"
        try:
            name = self._snapshots.create_snapshot(volume_id, snapshot_name, self._snapshot_class)
            logger.info(f"Created snapshot {name}, waiting for it to become ready")

            step = "wait_ready"
            status = self._snapshots.wait_ready(name, self._ready_timeout, token)

            step = "resolve_handle"
            handle = self._snapshots.get_storage_handle(name)
        except CBTBackupError as e:
            raise e.with_context(step=step, volume_id=volume_id)

        device = device_path or status.device_path
        if not device:
            raise SnapshotNotBoundError(
                f"snapshot {name} exposes no readable device", snapshot=name, step="resolve_device"
            )

        request = BackupRequest(
            volume_id=volume_id,
            backup_id=BackupId(name),
            snapshot_handle=handle,
            device_path=device,
            base_backup_id=base_backup_id,
            snapshot_name=name,
        )
        return self._engine.create_backup(request, token)

    def delete_snapshot(self, snapshot_id: SnapshotId) -> None:
        """Delete a snapshot name. Its content stays usable for deltas."""
        self._snapshots.delete_snapshot(snapshot_id)
