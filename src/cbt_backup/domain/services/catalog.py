"""Backup catalog and chain resolution.

The catalog is the durable index of published backups. A backup becomes
visible at exactly one point: when its manifest is written. Everything
the manifest refers to (block list, chain entry, blocks) is written
before it, so a visible backup is always complete.

Per-volume ordering lives in ``catalog/<volumeID>.json``. The index can
always be re-derived from the manifests with ``rebuild``.
"""

from __future__ import annotations

import json
import logging
import threading

from cbt_backup.domain.entities import (
    BackupManifest,
    BackupState,
    BlockList,
    CatalogRecord,
    ChainEntry,
    RestorePlan,
)
from cbt_backup.domain.errors import (
    BackupAlreadyExistsError,
    BackupNotFoundError,
    ChainIntegrityError,
    ObjectNotFoundError,
)
from cbt_backup.domain.services.block_store import BlockStore
from cbt_backup.domain.value_objects import BackupId, VolumeId


logger = logging.getLogger(__name__)

INDEX_PREFIX = "catalog"


def index_key(volume_id: str) -> str:
    return f"{INDEX_PREFIX}/{volume_id}.json"


class Catalog:
    """Durable record of published backups and their chains.

    Thread Safety:
        Publication and index updates are serialized by an internal lock.
        Reads may run concurrently.

    Example:
        catalog.begin(backup_id)
        ...  # store blocks
        catalog.publish(manifest, chain, block_list)
    """

    def __init__(self, store: BlockStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._pending: set[BackupId] = set()
        self._records: dict[BackupId, CatalogRecord] = {}

    @property
    def store(self) -> BlockStore:
        return self._store

    def begin(self, backup_id: BackupId) -> None:
        """Reserve an ID for a backup in progress.

        Raises:
            BackupAlreadyExistsError: If the ID is published or in progress.
        """
        with self._lock:
            if backup_id in self._pending or self._store.has_manifest(backup_id):
                raise BackupAlreadyExistsError(
                    f"backup {backup_id} already exists", backup_id=backup_id
                )
            self._pending.add(backup_id)

    def abandon(self, backup_id: BackupId) -> None:
        """Drop the reservation of a failed backup. Its blocks stay as orphans."""
        with self._lock:
            self._pending.discard(backup_id)

    def state(self, backup_id: BackupId) -> BackupState | None:
        if backup_id in self._pending:
            return BackupState.PENDING
        if self.exists(backup_id):
            return BackupState.PUBLISHED
        return None

    def publish(
        self,
        manifest: BackupManifest,
        chain: ChainEntry,
        block_list: BlockList,
    ) -> CatalogRecord:
        """Make a backup visible.

        Raises:
            BackupAlreadyExistsError: If the backup is already published.
            ConnectivityError: If the store fails; nothing becomes visible.
        """
        backup_id = manifest.backup_id
        if chain.backup_id != backup_id:
            raise ValueError(f"chain entry {chain.backup_id} does not belong to {backup_id}")

        with self._lock:
            if self._store.has_manifest(backup_id):
                raise BackupAlreadyExistsError(
                    f"backup {backup_id} is already published", backup_id=backup_id
                )

            self._store.put_block_list(backup_id, block_list.sorted())
            self._store.put_chain(chain)
            self._store.put_manifest(manifest)

            try:
                ids = self._read_index(manifest.volume_id)
                if backup_id not in ids:
                    ids.append(backup_id)
                self._write_index(manifest.volume_id, ids)
            except Exception:
                logger.error("Index update failed for %s, withdrawing manifest", backup_id)
                self._store.delete_manifest(backup_id)
                raise

            self._pending.discard(backup_id)
            record = CatalogRecord(manifest=manifest, chain=chain)
            self._records[backup_id] = record

        logger.info(
            f"Published backup {backup_id} "
            f"({'incremental' if manifest.is_incremental else 'full'}, "
            f"{manifest.total_ranges} ranges, {manifest.total_bytes} bytes)"
        )
        return record

    def exists(self, backup_id: BackupId) -> bool:
        if backup_id in self._pending:
            return False
        if self._store.has_manifest(backup_id):
            return True
        self._records.pop(backup_id, None)
        return False

    def get(self, backup_id: BackupId) -> CatalogRecord:
        """Fetch a published backup.

        Raises:
            BackupNotFoundError: If the backup is absent or still pending.
        """
        if backup_id in self._pending:
            raise BackupNotFoundError(
                f"backup {backup_id} is not published yet", backup_id=backup_id
            )
        # A cached record is valid only while its manifest exists.
        record = self._records.get(backup_id)
        if record is not None and self.exists(backup_id):
            return record

        try:
            manifest = self._store.get_manifest(backup_id)
        except ObjectNotFoundError as e:
            raise BackupNotFoundError(
                f"backup {backup_id} not found", backup_id=backup_id
            ) from e

        try:
            chain = self._store.get_chain(backup_id)
        except ObjectNotFoundError:
            if manifest.is_incremental:
                raise ChainIntegrityError(
                    f"incremental backup {backup_id} has no chain entry",
                    backup_id=backup_id,
                )
            chain = ChainEntry.full(backup_id)

        record = CatalogRecord(manifest=manifest, chain=chain)
        self._records[backup_id] = record
        return record

    def get_block_list(self, backup_id: BackupId) -> BlockList:
        """Raises ChainIntegrityError if a published backup lost its block list."""
        try:
            return self._store.get_block_list(backup_id)
        except ObjectNotFoundError as e:
            raise ChainIntegrityError(
                f"block list of {backup_id} is missing", backup_id=backup_id
            ) from e

    def list_volume(self, volume_id: VolumeId) -> list[CatalogRecord]:
        """Published backups of a volume in creation order."""
        try:
            ids = self._read_index(volume_id, missing_ok=False)
        except ObjectNotFoundError:
            ids = self._derive_order(self._store.list_backups(volume_id))

        records = []
        for backup_id in ids:
            try:
                records.append(self.get(backup_id))
            except BackupNotFoundError:
                logger.warning("Index of %s lists unknown backup %s", volume_id, backup_id)
        return records

    def list_all(self) -> list[CatalogRecord]:
        """Every published backup, ordered by creation time."""
        records = [self.get(i) for i in self._store.list_backups()]
        return sorted(records, key=lambda r: (r.manifest.timestamp, r.backup_id))

    def rebuild(self) -> int:
        """Re-derive every volume index from the manifests in storage.

        Returns:
            Number of volumes indexed.
        """
        with self._lock:
            self._records.clear()
            by_volume: dict[str, list[BackupManifest]] = {}
            for backup_id in self._store.list_backups():
                manifest = self._store.get_manifest(backup_id)
                by_volume.setdefault(manifest.volume_id, []).append(manifest)

            for volume_id, manifests in by_volume.items():
                manifests.sort(key=lambda m: (m.timestamp, m.backup_id))
                self._write_index(volume_id, [m.backup_id for m in manifests])

        logger.info("Rebuilt catalog index for %d volumes", len(by_volume))
        return len(by_volume)

    def _derive_order(self, ids: list[BackupId]) -> list[BackupId]:
        manifests = [self._store.get_manifest(i) for i in ids]
        manifests.sort(key=lambda m: (m.timestamp, m.backup_id))
        return [m.backup_id for m in manifests]

    def _read_index(self, volume_id: str, missing_ok: bool = True) -> list[BackupId]:
        try:
            raw = self._store.storage.get(index_key(volume_id))
        except ObjectNotFoundError:
            if missing_ok:
                return []
            raise
        doc = json.loads(raw.decode("utf-8"))
        return [BackupId(i) for i in doc.get("backups", [])]

    def _write_index(self, volume_id: str, ids: list[BackupId]) -> None:
        doc = {"volumeID": volume_id, "backups": list(ids)}
        self._store.storage.put(
            index_key(volume_id),
            json.dumps(doc, indent=2).encode("utf-8"),
            "application/json",
        )


class ChainResolver:
    """Resolves the ordered list of backups a restore must replay."""

    def __init__(self, catalog: Catalog) -> None:
        self._catalog = catalog

    def resolve_chain(self, target: BackupId) -> list[BackupId]:
        """Return the chain of ``target``, base first and target last.

        Raises:
            BackupNotFoundError: If ``target`` is not published.
            ChainIntegrityError: If any dependency is missing.
        """
        record = self._catalog.get(target)
        dependencies = list(record.chain.dependencies)

        if record.chain.is_incremental:
            if not dependencies or dependencies[-1] != record.chain.base_backup_id:
                raise ChainIntegrityError(
                    f"chain of {target} does not end at its base {record.chain.base_backup_id}",
                    backup_id=target,
                )
        elif dependencies:
            raise ChainIntegrityError(
                f"full backup {target} lists dependencies", backup_id=target
            )

        for dependency in dependencies:
            if not self._catalog.exists(dependency):
                raise ChainIntegrityError(
                    f"backup {target} depends on missing backup {dependency}",
                    backup_id=target,
                    missing=dependency,
                )

        return [*dependencies, target]

    def plan_restore(self, target: BackupId) -> RestorePlan:
        """Compute the chain and transfer size of a restore.

        Raises:
            BackupNotFoundError: If ``target`` is not published.
            ChainIntegrityError: If a dependency or block list is missing.
        """
        chain = self.resolve_chain(target)
        total_bytes = 0
        block_count = 0
        for backup_id in chain:
            block_list = self._catalog.get_block_list(backup_id)
            total_bytes += block_list.total_bytes
            block_count += len(block_list)

        return RestorePlan(
            target=target,
            source_backups=tuple(chain),
            volume_size=self._catalog.get(target).manifest.volume_size,
            total_bytes=total_bytes,
            block_count=block_count,
        )
