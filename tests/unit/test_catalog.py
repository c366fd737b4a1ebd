"""Unit tests for Catalog and ChainResolver."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from cbt_backup.adapters.outbound.memory_object_storage import InMemoryObjectStorage
from cbt_backup.domain.entities import BackupState, BlockList, ChainEntry
from cbt_backup.domain.errors import (
    BackupAlreadyExistsError,
    BackupNotFoundError,
    ChainIntegrityError,
    ConnectivityError,
)
from cbt_backup.domain.services import Catalog, ChainResolver
from cbt_backup.domain.value_objects import BackupId, BlockRange


A = BackupId("vol-a-snapshot-1")
B = BackupId("vol-a-snapshot-2")
C = BackupId("vol-a-snapshot-3")

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _blocks(*ranges: BlockRange) -> BlockList:
    blocks = BlockList()
    for block_range in ranges:
        blocks.add(block_range, "0" * 64)
    return blocks


@pytest.fixture
def publish(catalog: Catalog, manifest_factory):
    """Publish a backup of vol-a, optionally on top of ``base``."""

    def _publish(backup_id: BackupId, base: ChainEntry | None = None, minutes: int = 0):
        chain = ChainEntry.incremental(backup_id, base) if base else ChainEntry.full(backup_id)
        manifest = manifest_factory(
            backup_id=backup_id,
            snapshot_name=backup_id,
            is_incremental=base is not None,
            base_backup_id=base.backup_id if base else None,
            timestamp=T0 + timedelta(minutes=minutes),
        )
        catalog.begin(backup_id)
        catalog.publish(manifest, chain, _blocks(BlockRange(0, 1024)))
        return chain

    return _publish


@pytest.mark.unit
class TestCatalog:
    """Tests for publication and lookup."""

    def test_pending_backup_invisible(self, catalog: Catalog) -> None:
        """A reserved but unpublished backup cannot be read."""
        catalog.begin(A)
        assert catalog.state(A) is BackupState.PENDING
        assert not catalog.exists(A)
        with pytest.raises(BackupNotFoundError):
            catalog.get(A)

    def test_publish_makes_visible(self, catalog: Catalog, publish) -> None:
        """After publish, the record and block list are readable."""
        publish(A)
        assert catalog.state(A) is BackupState.PUBLISHED
        record = catalog.get(A)
        assert record.backup_id == A
        assert not record.chain.is_incremental
        assert len(catalog.get_block_list(A)) == 1

    def test_begin_rejects_existing(self, catalog: Catalog, publish) -> None:
        """IDs already published or in progress cannot be reserved."""
        publish(A)
        with pytest.raises(BackupAlreadyExistsError):
            catalog.begin(A)

        catalog.begin(B)
        with pytest.raises(BackupAlreadyExistsError):
            catalog.begin(B)

    def test_abandon_frees_id(self, catalog: Catalog) -> None:
        """An abandoned reservation leaves no trace and can be retried."""
        catalog.begin(A)
        catalog.abandon(A)
        assert catalog.state(A) is None
        catalog.begin(A)

    def test_block_list_stored_sorted(self, catalog: Catalog, manifest_factory) -> None:
        """Block lists are persisted in offset order."""
        catalog.begin(A)
        catalog.publish(
            manifest_factory(backup_id=A, is_incremental=False, base_backup_id=None),
            ChainEntry.full(A),
            _blocks(BlockRange(4096, 10), BlockRange(0, 10)),
        )
        assert [b.offset for b in catalog.get_block_list(A)] == [0, 4096]

    def test_index_failure_withdraws_manifest(
        self, catalog: Catalog, storage: InMemoryObjectStorage, manifest_factory
    ) -> None:
        """If the volume index cannot be written, the backup stays invisible."""
        storage.fail_on["catalog/"] = ConnectivityError("store unavailable")
        catalog.begin(A)
        with pytest.raises(ConnectivityError):
            catalog.publish(
                manifest_factory(backup_id=A, is_incremental=False, base_backup_id=None),
                ChainEntry.full(A),
                BlockList(),
            )

        catalog.abandon(A)
        assert not catalog.exists(A)
        assert "metadata/vol-a-snapshot-1/manifest.json" not in storage.objects

    def test_list_volume_in_creation_order(self, catalog: Catalog, publish) -> None:
        """list_volume follows the index order."""
        a = publish(A)
        publish(B, base=a, minutes=1)
        assert [r.backup_id for r in catalog.list_volume("vol-a")] == [A, B]
        assert catalog.list_volume("vol-z") == []

    def test_rebuild_restores_lost_index(
        self, catalog: Catalog, storage: InMemoryObjectStorage, publish
    ) -> None:
        """rebuild re-derives the index from manifests."""
        a = publish(A, minutes=0)
        publish(B, base=a, minutes=5)
        storage.delete("catalog/vol-a.json")

        assert catalog.rebuild() == 1
        assert "catalog/vol-a.json" in storage.objects
        assert [r.backup_id for r in catalog.list_volume("vol-a")] == [A, B]

    def test_reads_survive_new_instance(
        self, catalog: Catalog, publish, block_store
    ) -> None:
        """A fresh catalog over the same store sees published backups."""
        a = publish(A)
        publish(B, base=a, minutes=1)
        fresh = Catalog(block_store)
        record = fresh.get(B)
        assert record.chain.dependencies == (A,)
        assert [r.backup_id for r in fresh.list_all()] == [A, B]


@pytest.mark.unit
class TestChainResolver:
    """Tests for chain resolution."""

    def test_full_backup_chain(self, catalog: Catalog, publish) -> None:
        """A full backup restores alone."""
        publish(A)
        assert ChainResolver(catalog).resolve_chain(A) == [A]

    def test_incremental_chain_base_first(self, catalog: Catalog, publish) -> None:
        """The chain lists the full backup first and the target last."""
        a = publish(A)
        b = publish(B, base=a, minutes=1)
        publish(C, base=b, minutes=2)
        assert ChainResolver(catalog).resolve_chain(C) == [A, B, C]

    def test_unknown_target(self, catalog: Catalog) -> None:
        """Resolving an unknown backup raises BackupNotFoundError."""
        with pytest.raises(BackupNotFoundError):
            ChainResolver(catalog).resolve_chain(BackupId("nope"))

    def test_missing_dependency(
        self, catalog: Catalog, storage: InMemoryObjectStorage, publish
    ) -> None:
        """A base deleted after publication is noticed by the same catalog."""
        a = publish(A)
        publish(B, base=a, minutes=1)
        assert ChainResolver(catalog).resolve_chain(B) == [A, B]

        storage.delete("metadata/vol-a-snapshot-1/manifest.json")

        with pytest.raises(ChainIntegrityError) as exc_info:
            ChainResolver(catalog).resolve_chain(B)
        assert exc_info.value.context["missing"] == A
        assert not catalog.exists(A)

    def test_deleted_target_not_served_from_cache(
        self, catalog: Catalog, storage: InMemoryObjectStorage, publish
    ) -> None:
        """A target whose manifest was deleted is no longer found."""
        publish(A)
        catalog.get(A)
        storage.delete("metadata/vol-a-snapshot-1/manifest.json")

        with pytest.raises(BackupNotFoundError):
            ChainResolver(catalog).resolve_chain(A)

    def test_missing_block_list(
        self, catalog: Catalog, storage: InMemoryObjectStorage, publish
    ) -> None:
        """Planning fails before any write if a block list is gone."""
        publish(A)
        storage.delete("metadata/vol-a-snapshot-1/blocks.json")
        with pytest.raises(ChainIntegrityError):
            ChainResolver(catalog).plan_restore(A)

    def test_plan_totals(self, catalog: Catalog, publish) -> None:
        """The plan sums blocks and bytes across the chain."""
        a = publish(A)
        publish(B, base=a, minutes=1)
        plan = ChainResolver(catalog).plan_restore(B)

        assert plan.source_backups == (A, B)
        assert plan.block_count == 2
        assert plan.total_bytes == 2048
        assert plan.volume_size == 4 * 1024 * 1024
