"""Outbound adapters - devices, object storage and snapshot drivers."""

from cbt_backup.adapters.outbound.block_device import BlockDeviceReader, BlockDeviceWriter
from cbt_backup.adapters.outbound.hostpath_driver import HostPathSnapshotDriver
from cbt_backup.adapters.outbound.local_object_storage import LocalObjectStorage
from cbt_backup.adapters.outbound.memory_object_storage import InMemoryObjectStorage
from cbt_backup.adapters.outbound.s3_object_storage import S3ObjectStorage

__all__ = [
    "BlockDeviceReader",
    "BlockDeviceWriter",
    "HostPathSnapshotDriver",
    "LocalObjectStorage",
    "InMemoryObjectStorage",
    "S3ObjectStorage",
]
