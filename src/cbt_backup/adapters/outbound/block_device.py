"""Block device reader and writer over raw devices or image files.

These adapters implement the BlockReaderPort and BlockWriterPort
protocols with unbuffered positional file I/O. They work the same on a
raw block device (``/dev/xvdb``) and on a regular image file.

Thread Safety:
    One file descriptor is shared by all worker threads. Every
    seek+read and seek+write pair runs under a lock, so concurrent calls
    never interleave their positioning.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import BinaryIO

from cbt_backup.domain.errors import (
    BlockIntegrityError,
    DeviceReadError,
    PartialWriteError,
)
from cbt_backup.domain.value_objects import BlockPayload, BlockRange


logger = logging.getLogger(__name__)


def _device_size(file: BinaryIO) -> int:
    # Block devices report st_size 0; seeking to the end works for both.
    return file.seek(0, os.SEEK_END)


class BlockDeviceReader:
    """Reads checksummed ranges from a device.

    Attributes:
        path: Device or image path.
    """

    def __init__(self, path: str | Path) -> None:
        """Open the device read-only.

        Raises:
            DeviceReadError: If the device cannot be opened.
        """
        self._path = Path(path)
        self._lock = threading.Lock()
        self._closed = False
        try:
            self._file: BinaryIO = open(self._path, "rb", buffering=0)
            self._size = _device_size(self._file)
        except OSError as e:
            raise DeviceReadError(f"failed to open device: {e}", device=str(self._path)) from e

    @property
    def path(self) -> Path:
        return self._path

    def size(self) -> int:
        return self._size

    def read_range(self, block_range: BlockRange) -> BlockPayload:
        """Read one range.

        A range that runs past the end of the device is shrunk to the
        bytes actually present.

        Raises:
            DeviceReadError: On I/O failure or when the range starts at or
                past the end of the device.
        """
        if self._closed:
            raise DeviceReadError("device is closed", device=str(self._path))
        if block_range.offset >= self._size:
            raise DeviceReadError(
                f"range starts past end of device ({self._size} bytes)",
                device=str(self._path),
                offset=block_range.offset,
            )

        chunks: list[bytes] = []
        remaining = block_range.size
        try:
            with self._lock:
                self._file.seek(block_range.offset)
                while remaining > 0:
                    chunk = self._file.read(remaining)
                    if not chunk:
                        break  # EOF
                    chunks.append(chunk)
                    remaining -= len(chunk)
        except OSError as e:
            raise DeviceReadError(
                f"failed to read block: {e}",
                device=str(self._path),
                offset=block_range.offset,
            ) from e

        data = b"".join(chunks)
        if not data:
            raise DeviceReadError(
                "read returned no data",
                device=str(self._path),
                offset=block_range.offset,
            )
        if len(data) < block_range.size:
            logger.debug(
                "Short read at offset %d: %d of %d bytes",
                block_range.offset,
                len(data),
                block_range.size,
            )

        return BlockPayload.from_data(block_range.offset, data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._file.close()

    def __enter__(self) -> BlockDeviceReader:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class BlockDeviceWriter:
    """Writes ranges to a destination device.

    Writes go straight to the descriptor (no userspace buffering), so
    ``sync`` only has to fsync.
    """

    def __init__(self, path: str | Path, size: int | None = None, create: bool = False) -> None:
        """Open the device for writing.

        Args:
            path: Device or image path.
            size: Expected volume size. A regular file shorter than this
                is extended; a raw device is never resized.
            create: Create the file if it does not exist (image files only).

        Raises:
            DeviceReadError: If the device cannot be opened.
        """
        self._path = Path(path)
        self._lock = threading.Lock()
        self._closed = False
        self._dirty = False

        try:
            if create and not self._path.exists():
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._path.touch()
            self._file: BinaryIO = open(self._path, "r+b", buffering=0)
            if size is not None and self._path.is_file():
                current = _device_size(self._file)
                if current < size:
                    os.ftruncate(self._file.fileno(), size)
        except OSError as e:
            raise DeviceReadError(
                f"failed to open device for writing: {e}", device=str(self._path)
            ) from e

    @property
    def path(self) -> Path:
        return self._path

    def write_range(self, payload: BlockPayload) -> None:
        """Write a payload at its offset.

        Raises:
            BlockIntegrityError: If the payload fails its own checksum.
            PartialWriteError: If the device accepted fewer bytes.
        """
        if self._closed:
            raise PartialWriteError("device is closed", device=str(self._path))
        if not payload.verify_checksum():
            raise BlockIntegrityError(
                "payload does not match its checksum",
                device=str(self._path),
                offset=payload.range.offset,
            )

        try:
            with self._lock:
                self._file.seek(payload.range.offset)
                written = self._file.write(payload.data)
                self._dirty = True
        except OSError as e:
            raise PartialWriteError(
                f"failed to write block: {e}",
                device=str(self._path),
                offset=payload.range.offset,
            ) from e

        if written is None or written != len(payload.data):
            raise PartialWriteError(
                f"partial write: {written} of {len(payload.data)} bytes",
                device=str(self._path),
                offset=payload.range.offset,
            )

    def sync(self) -> None:
        """Flush written data to stable storage."""
        if self._closed:
            return
        with self._lock:
            os.fsync(self._file.fileno())
            self._dirty = False

    def close(self) -> None:
        """Flush and release the device."""
        if self._closed:
            return
        try:
            if self._dirty:
                self.sync()
        finally:
            self._closed = True
            self._file.close()

    def __enter__(self) -> BlockDeviceWriter:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
