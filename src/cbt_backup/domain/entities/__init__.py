"""Domain entities."""

from cbt_backup.domain.entities.catalog_record import BackupState, CatalogRecord, RestorePlan
from cbt_backup.domain.entities.manifest import (
    BackupManifest,
    BlockList,
    BlockRecord,
    ChainEntry,
)
from cbt_backup.domain.entities.stats import BackupStats, RestoreStats

__all__ = [
    "BackupManifest",
    "BlockList",
    "BlockRecord",
    "ChainEntry",
    "BackupState",
    "CatalogRecord",
    "RestorePlan",
    "BackupStats",
    "RestoreStats",
]
