"""Application layer - backup, restore and snapshot coordination."""

from cbt_backup.application.backup_engine import BackupEngine
from cbt_backup.application.coordinator import BackupCoordinator
from cbt_backup.application.restore_engine import RestoreEngine

__all__ = [
    "BackupEngine",
    "BackupCoordinator",
    "RestoreEngine",
]
