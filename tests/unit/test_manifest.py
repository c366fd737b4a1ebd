"""Unit tests for manifests, chain entries and block lists."""

from __future__ import annotations

import json

import pytest

from cbt_backup.domain.entities import BackupManifest, BlockList, ChainEntry
from cbt_backup.domain.value_objects import BackupId, BlockRange


@pytest.mark.unit
class TestBackupManifest:
    """Tests for BackupManifest."""

    def test_wire_format_uses_camel_case(self, manifest_factory) -> None:
        """Serialized manifests use the documented field names."""
        doc = manifest_factory().to_dict()
        assert doc["backupID"] == "vol-a-snapshot-2"
        assert doc["volumeID"] == "vol-a"
        assert doc["baseBackupID"] == "vol-a-snapshot-1"
        assert doc["isIncremental"] is True
        assert doc["totalRanges"] == 1
        assert doc["totalBytes"] == 512 * 1024
        assert doc["snapshotHandle"] == "snap-2"
        assert doc["volumeMode"] == "Block"
        assert "compressedSize" not in doc

    def test_survives_json(self, manifest_factory) -> None:
        """A manifest read back from JSON equals the original."""
        manifest = manifest_factory()
        restored = BackupManifest.from_dict(json.loads(json.dumps(manifest.to_dict())))
        assert restored == manifest

    def test_full_manifest_omits_base(self, manifest_factory) -> None:
        """Full backups carry no base field."""
        doc = manifest_factory(is_incremental=False, base_backup_id=None).to_dict()
        assert "baseBackupID" not in doc

    def test_incremental_requires_base(self, manifest_factory) -> None:
        """An incremental manifest without a base is rejected."""
        with pytest.raises(ValueError):
            manifest_factory(base_backup_id=None)

    def test_full_rejects_base(self, manifest_factory) -> None:
        """A full manifest with a base is rejected."""
        with pytest.raises(ValueError):
            manifest_factory(is_incremental=False)


@pytest.mark.unit
class TestChainEntry:
    """Tests for ChainEntry."""

    def test_incremental_extends_base_dependencies(self) -> None:
        """Dependencies are the base's dependencies followed by the base."""
        a = ChainEntry.full(BackupId("a"))
        b = ChainEntry.incremental(BackupId("b"), a)
        c = ChainEntry.incremental(BackupId("c"), b)

        assert a.dependencies == ()
        assert b.dependencies == ("a",)
        assert c.dependencies == ("a", "b")
        assert c.base_backup_id == "b"
        assert c.is_incremental and not a.is_incremental

    def test_dict_form(self) -> None:
        """Chain entries serialize with camelCase keys and read back equal."""
        entry = ChainEntry.incremental(BackupId("b"), ChainEntry.full(BackupId("a")))
        doc = entry.to_dict()
        assert doc == {
            "backupID": "b",
            "isIncremental": True,
            "dependencies": ["a"],
            "baseBackupID": "a",
        }
        assert ChainEntry.from_dict(doc) == entry


@pytest.mark.unit
class TestBlockList:
    """Tests for BlockList."""

    def test_sorted_orders_by_offset(self) -> None:
        """Blocks added out of order are sorted by offset."""
        blocks = BlockList()
        blocks.add(BlockRange(2048, 1024), "c2")
        blocks.add(BlockRange(0, 1024), "c0")
        blocks.add(BlockRange(1024, 1024), "c1")

        assert [b.offset for b in blocks.sorted()] == [0, 1024, 2048]
        assert blocks.total_bytes == 3072
        assert len(blocks) == 3

    def test_dict_form(self) -> None:
        """Block lists serialize as {"blocks": [...]}."""
        blocks = BlockList()
        blocks.add(BlockRange(0, 10), "abc")
        doc = blocks.to_dict()
        assert doc == {"blocks": [{"offset": 0, "size": 10, "checksum": "abc"}]}
        assert BlockList.from_dict(doc).blocks == blocks.blocks
