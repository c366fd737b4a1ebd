"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the systems the backup engine
depends on: block devices, object storage, the snapshot orchestration
API and the changed-block metadata service.
"""

from cbt_backup.ports.outbound.block_device import BlockReaderPort, BlockWriterPort
from cbt_backup.ports.outbound.object_storage import ObjectStoragePort
from cbt_backup.ports.outbound.snapshot import (
    MetadataBatch,
    SnapshotLifecyclePort,
    SnapshotMetadataPort,
    SnapshotStatus,
)

__all__ = [
    "BlockReaderPort",
    "BlockWriterPort",
    "ObjectStoragePort",
    "MetadataBatch",
    "SnapshotLifecyclePort",
    "SnapshotMetadataPort",
    "SnapshotStatus",
]
