"""Content store for backup blocks and metadata documents.

Object layout under the bucket::

    blocks/<backupID>/<offset>          block data (offset zero-padded to 20 digits)
    blocks/<backupID>/<offset>.sha256   hex checksum of the block data
    metadata/<backupID>/manifest.json
    metadata/<backupID>/blocks.json
    metadata/<backupID>/chain.json

A block's data is never returned unless it matches its checksum.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cbt_backup.domain.entities import BackupManifest, BlockList, ChainEntry
from cbt_backup.domain.errors import BlockIntegrityError, ObjectNotFoundError
from cbt_backup.domain.value_objects import (
    BackupId,
    BlockPayload,
    BlockRange,
    compute_checksum,
)
from cbt_backup.ports.outbound import ObjectStoragePort


logger = logging.getLogger(__name__)

BLOCKS_PREFIX = "blocks"
METADATA_PREFIX = "metadata"
MANIFEST_FILE = "manifest.json"
BLOCK_LIST_FILE = "blocks.json"
CHAIN_FILE = "chain.json"
CHECKSUM_SUFFIX = ".sha256"


def block_key(backup_id: BackupId, offset: int) -> str:
    return f"{BLOCKS_PREFIX}/{backup_id}/{offset:020d}"


def metadata_key(backup_id: BackupId, name: str) -> str:
    return f"{METADATA_PREFIX}/{backup_id}/{name}"


class BlockStore:
    """Stores checksummed blocks and per-backup JSON documents.

    Thread Safety:
        Safe for concurrent use as long as the underlying object storage
        is; the store itself holds no mutable state.
    """

    def __init__(self, storage: ObjectStoragePort) -> None:
        self._storage = storage

    @property
    def storage(self) -> ObjectStoragePort:
        return self._storage

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    def put_block(self, backup_id: BackupId, payload: BlockPayload) -> bool:
        """Store one block and its checksum.

        Storing the same (backup, offset) twice with identical content is
        a no-op.

        Returns:
            True if the block was written, False if an identical copy
            was already present.

        Raises:
            BlockIntegrityError: If the payload does not match its checksum.
            ConnectivityError: If the object store is unreachable.
        """
        if not payload.verify_checksum():
            raise BlockIntegrityError(
                "refusing to store block whose data does not match its checksum",
                backup_id=backup_id,
                offset=payload.range.offset,
            )

        key = block_key(backup_id, payload.range.offset)
        checksum_path = key + CHECKSUM_SUFFIX

        existing = self._read_checksum(checksum_path)
        if existing == payload.checksum and self._storage.exists(key):
            logger.debug("Block %s already stored, skipping", key)
            return False

        # Data first: a checksum object implies its data is complete.
        self._storage.put(key, payload.data)
        self._storage.put(checksum_path, payload.checksum.encode("ascii"), "text/plain")
        return True

    def get_block(
        self,
        backup_id: BackupId,
        block_range: BlockRange,
        expected_checksum: str | None = None,
    ) -> BlockPayload:
        """Fetch and verify one block.

        Args:
            backup_id: Backup that stored the block.
            block_range: Range recorded in the backup's block list.
            expected_checksum: Checksum recorded in the block list, if known.

        Raises:
            BlockIntegrityError: If the block is missing or fails verification.
            ConnectivityError: If the object store is unreachable.
        """
        key = block_key(backup_id, block_range.offset)
        try:
            data = self._storage.get(key)
        except ObjectNotFoundError as e:
            raise BlockIntegrityError(
                "block missing from storage",
                backup_id=backup_id,
                offset=block_range.offset,
            ) from e

        stored_checksum = self._read_checksum(key + CHECKSUM_SUFFIX)
        actual = compute_checksum(data)

        if stored_checksum is not None and stored_checksum != actual:
            raise BlockIntegrityError(
                "block checksum mismatch",
                backup_id=backup_id,
                offset=block_range.offset,
                expected=stored_checksum,
                actual=actual,
            )
        if expected_checksum is not None and expected_checksum != actual:
            raise BlockIntegrityError(
                "block does not match block list checksum",
                backup_id=backup_id,
                offset=block_range.offset,
                expected=expected_checksum,
                actual=actual,
            )
        if len(data) != block_range.size:
            raise BlockIntegrityError(
                f"block size mismatch: expected {block_range.size}, got {len(data)}",
                backup_id=backup_id,
                offset=block_range.offset,
            )

        return BlockPayload(range=block_range, checksum=actual, data=data)

    def _read_checksum(self, path: str) -> str | None:
        try:
            return self._storage.get(path).decode("ascii").strip()
        except ObjectNotFoundError:
            return None

    # -------------------------------------------------------------------------
    # Metadata documents
    # -------------------------------------------------------------------------

    def put_manifest(self, manifest: BackupManifest) -> None:
        self._put_json(metadata_key(manifest.backup_id, MANIFEST_FILE), manifest.to_dict())

    def get_manifest(self, backup_id: BackupId) -> BackupManifest:
        """Raises ObjectNotFoundError when the backup has no manifest."""
        return BackupManifest.from_dict(self._get_json(metadata_key(backup_id, MANIFEST_FILE)))

    def has_manifest(self, backup_id: BackupId) -> bool:
        return self._storage.exists(metadata_key(backup_id, MANIFEST_FILE))

    def delete_manifest(self, backup_id: BackupId) -> None:
        self._storage.delete(metadata_key(backup_id, MANIFEST_FILE))

    def put_block_list(self, backup_id: BackupId, block_list: BlockList) -> None:
        self._put_json(metadata_key(backup_id, BLOCK_LIST_FILE), block_list.to_dict())

    def get_block_list(self, backup_id: BackupId) -> BlockList:
        return BlockList.from_dict(self._get_json(metadata_key(backup_id, BLOCK_LIST_FILE)))

    def put_chain(self, chain: ChainEntry) -> None:
        self._put_json(metadata_key(chain.backup_id, CHAIN_FILE), chain.to_dict())

    def get_chain(self, backup_id: BackupId) -> ChainEntry:
        return ChainEntry.from_dict(self._get_json(metadata_key(backup_id, CHAIN_FILE)))

    def list_backups(self, volume_id: str | None = None) -> list[BackupId]:
        """Backup IDs that have a manifest, optionally limited to one volume.

        The volume filter reads each manifest, so it is exact rather than
        a name-prefix match.
        """
        suffix = "/" + MANIFEST_FILE
        ids = [
            BackupId(key[len(METADATA_PREFIX) + 1 : -len(suffix)])
            for key in self._storage.list(METADATA_PREFIX + "/")
            if key.endswith(suffix)
        ]
        if volume_id is None:
            return ids
        return [i for i in ids if self.get_manifest(i).volume_id == volume_id]

    def _put_json(self, path: str, doc: dict[str, Any]) -> None:
        self._storage.put(path, json.dumps(doc, indent=2).encode("utf-8"), "application/json")

    def _get_json(self, path: str) -> dict[str, Any]:
        return json.loads(self._storage.get(path).decode("utf-8"))
