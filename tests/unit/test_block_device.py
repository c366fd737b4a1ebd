"""Unit tests for the block device reader and writer."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from cbt_backup.adapters.outbound.block_device import BlockDeviceReader, BlockDeviceWriter
from cbt_backup.domain.errors import BlockIntegrityError, DeviceReadError, PartialWriteError
from cbt_backup.domain.value_objects import BlockPayload, BlockRange


@pytest.mark.unit
class TestBlockDeviceReader:
    """Tests for BlockDeviceReader."""

    def test_reads_range_with_checksum(self, image_factory) -> None:
        """A range read carries the checksum of its bytes."""
        path, data = image_factory("disk.img", 8192)
        with BlockDeviceReader(path) as reader:
            payload = reader.read_range(BlockRange(4096, 1024))

        assert payload.data == data[4096:5120]
        assert payload.verify_checksum()

    def test_size_reported(self, image_factory) -> None:
        """size() is the length of the device."""
        path, _ = image_factory("disk.img", 12288)
        with BlockDeviceReader(path) as reader:
            assert reader.size() == 12288

    def test_range_past_end_is_shrunk(self, image_factory) -> None:
        """A range running past the end yields only the bytes present."""
        path, data = image_factory("disk.img", 5000)
        with BlockDeviceReader(path) as reader:
            payload = reader.read_range(BlockRange(4096, 4096))

        assert payload.range == BlockRange(4096, 904)
        assert payload.data == data[4096:]

    def test_range_starting_past_end_fails(self, image_factory) -> None:
        """A range beyond the device cannot be read."""
        path, _ = image_factory("disk.img", 4096)
        with BlockDeviceReader(path) as reader:
            with pytest.raises(DeviceReadError) as exc_info:
                reader.read_range(BlockRange(4096, 10))
        assert exc_info.value.context["offset"] == 4096

    def test_missing_device(self, temp_dir: Path) -> None:
        """Opening a missing device raises DeviceReadError."""
        with pytest.raises(DeviceReadError):
            BlockDeviceReader(temp_dir / "absent.img")

    def test_read_after_close(self, image_factory) -> None:
        """A closed reader refuses to read."""
        path, _ = image_factory("disk.img", 4096)
        reader = BlockDeviceReader(path)
        reader.close()
        reader.close()
        with pytest.raises(DeviceReadError):
            reader.read_range(BlockRange(0, 10))


@pytest.mark.unit
class TestBlockDeviceWriter:
    """Tests for BlockDeviceWriter."""

    def test_writes_at_offset(self, image_factory) -> None:
        """Payloads land at their offsets and nowhere else."""
        path, data = image_factory("disk.img", 8192)
        with BlockDeviceWriter(path) as writer:
            writer.write_range(BlockPayload.from_data(4096, b"\xff" * 100))

        result = path.read_bytes()
        assert result[4096:4196] == b"\xff" * 100
        assert result[:4096] == data[:4096]
        assert result[4196:] == data[4196:]

    def test_create_and_extend(self, temp_dir: Path) -> None:
        """create=True makes a new image sized to the volume."""
        path = temp_dir / "out" / "restored.img"
        with BlockDeviceWriter(path, size=16384, create=True) as writer:
            writer.write_range(BlockPayload.from_data(0, b"abc"))

        assert path.stat().st_size == 16384
        assert path.read_bytes()[:3] == b"abc"

    def test_missing_device_without_create(self, temp_dir: Path) -> None:
        """A missing destination is an error unless create is set."""
        with pytest.raises(DeviceReadError):
            BlockDeviceWriter(temp_dir / "absent.img")

    def test_corrupt_payload_rejected(self, image_factory) -> None:
        """A payload that fails its checksum is never written."""
        path, data = image_factory("disk.img", 4096)
        good = BlockPayload.from_data(0, b"good")
        bad = BlockPayload(range=good.range, checksum=good.checksum, data=b"evil")
        with BlockDeviceWriter(path) as writer:
            with pytest.raises(BlockIntegrityError):
                writer.write_range(bad)
        assert path.read_bytes() == data

    def test_short_write_is_partial(self, image_factory) -> None:
        """Fewer bytes accepted than requested raises PartialWriteError."""
        path, _ = image_factory("disk.img", 4096)
        writer = BlockDeviceWriter(path)
        try:
            with patch.object(writer, "_file") as fake_file:
                fake_file.write.return_value = 2
                with pytest.raises(PartialWriteError) as exc_info:
                    writer.write_range(BlockPayload.from_data(128, b"abcd"))
            assert exc_info.value.context["offset"] == 128
        finally:
            writer.close()

    def test_io_error_is_partial(self, image_factory) -> None:
        """An OSError during write raises PartialWriteError."""
        path, _ = image_factory("disk.img", 4096)
        writer = BlockDeviceWriter(path)
        try:
            with patch.object(writer, "_file") as fake_file:
                fake_file.write.side_effect = OSError("device gone")
                with pytest.raises(PartialWriteError):
                    writer.write_range(BlockPayload.from_data(0, b"abcd"))
        finally:
            writer.close()

    def test_close_syncs_pending_writes(self, image_factory) -> None:
        """close() fsyncs when data was written since the last sync."""
        path, _ = image_factory("disk.img", 4096)
        with patch("cbt_backup.adapters.outbound.block_device.os.fsync") as fsync:
            writer = BlockDeviceWriter(path)
            writer.write_range(BlockPayload.from_data(0, b"abcd"))
            writer.close()
            assert fsync.call_count == 1

            writer.close()
            assert fsync.call_count == 1

    def test_sync_then_close_does_not_resync(self, image_factory) -> None:
        """A clean writer closes without another fsync."""
        path, _ = image_factory("disk.img", 4096)
        with patch("cbt_backup.adapters.outbound.block_device.os.fsync") as fsync:
            with BlockDeviceWriter(path) as writer:
                writer.write_range(BlockPayload.from_data(0, b"abcd"))
                writer.sync()
            assert fsync.call_count == 1
