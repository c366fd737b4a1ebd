"""Block device ports for ranged reads and writes.

The codec deals with raw byte ranges of a device or image file. It has
no knowledge of backups, chains or storage.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from cbt_backup.domain.value_objects import BlockPayload, BlockRange


class BlockReaderPort(Protocol):
    """Protocol for reading checksummed ranges from a device.

    Thread Safety:
        ``read_range`` may be called concurrently from worker threads.
    """

    @abstractmethod
    def size(self) -> int:
        """Total size of the device in bytes."""
        ...

    @abstractmethod
    def read_range(self, block_range: BlockRange) -> BlockPayload:
        """Read a range and checksum it.

        A range running past the end of the device yields a shorter
        payload whose range is shrunk to the bytes read.

        Raises:
            DeviceReadError: On I/O failure or a range starting past the end.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class BlockWriterPort(Protocol):
    """Protocol for writing ranges to a destination device.

    Thread Safety:
        ``write_range`` may be called concurrently for non-overlapping
        ranges.
    """

    @abstractmethod
    def write_range(self, payload: BlockPayload) -> None:
        """Write a payload at its range offset.

        Raises:
            PartialWriteError: If fewer than ``len(payload.data)`` bytes
                were written. Fatal; never retried.
            BlockIntegrityError: If the payload fails its own checksum.
        """
        ...

    @abstractmethod
    def sync(self) -> None:
        """Flush all writes to stable storage (fsync)."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Flush, then release the device."""
        ...
