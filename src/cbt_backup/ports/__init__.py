"""Ports layer - interface definitions following Hexagonal Architecture.

Ports are abstract interfaces (protocols) that define contracts:
- Inbound ports: APIs offered to clients (backup, restore, catalog)
- Outbound ports: Dependencies on external systems (devices, object
  storage, snapshot orchestration, CBT metadata)

Adapters implement these ports with concrete functionality.
"""

from cbt_backup.ports.inbound import (
    BackupRequest,
    BackupResult,
    BackupServicePort,
    CatalogPort,
    RestoreServicePort,
)
from cbt_backup.ports.outbound import (
    BlockReaderPort,
    BlockWriterPort,
    MetadataBatch,
    ObjectStoragePort,
    SnapshotLifecyclePort,
    SnapshotMetadataPort,
    SnapshotStatus,
)

__all__ = [
    # Inbound ports
    "BackupRequest",
    "BackupResult",
    "BackupServicePort",
    "CatalogPort",
    "RestoreServicePort",
    # Outbound ports
    "BlockReaderPort",
    "BlockWriterPort",
    "MetadataBatch",
    "ObjectStoragePort",
    "SnapshotLifecyclePort",
    "SnapshotMetadataPort",
    "SnapshotStatus",
]
