"""Byte ranges and checksummed block payloads."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterator


def compute_checksum(data: bytes) -> str:
    """Return the hex SHA-256 digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True, slots=True)
class BlockRange:
    """A byte-aligned region of a volume.

    Attributes:
        offset: Byte offset from the start of the volume.
        size: Length in bytes (always positive).

    Example:
        >>> BlockRange(0, 4096).end
        4096
    """

    offset: int
    size: int

    def __post_init__(self) -> None:
        """Validate the range."""
        if self.offset < 0:
            raise ValueError(f"offset must be non-negative, got {self.offset}")
        if self.size <= 0:
            raise ValueError(f"size must be positive, got {self.size}")

    @property
    def end(self) -> int:
        """Exclusive end offset."""
        return self.offset + self.size

    def split(self, block_size: int) -> Iterator[BlockRange]:
        """Split into pieces that never cross a ``block_size`` boundary.

        A range already inside one block is yielded unchanged, so
        sub-block deltas keep their exact extent.

        Args:
            block_size: Alignment granularity in bytes.

        Yields:
            Consecutive sub-ranges covering this range.
        """
        if block_size <= 0:
            raise ValueError(f"block_size must be positive, got {block_size}")

        offset = self.offset
        while offset < self.end:
            boundary = (offset // block_size + 1) * block_size
            piece_end = min(boundary, self.end)
            yield BlockRange(offset, piece_end - offset)
            offset = piece_end

    def to_dict(self) -> dict[str, int]:
        return {"offset": self.offset, "size": self.size}


@dataclass(frozen=True, slots=True)
class BlockPayload:
    """Data read from or destined for one range of a device.

    The range always describes exactly the bytes carried: a read that
    hits the end of the device shrinks the range instead of padding.
    """

    range: BlockRange
    checksum: str
    data: bytes

    @classmethod
    def from_data(cls, offset: int, data: bytes) -> BlockPayload:
        """Build a payload for ``data`` located at ``offset``."""
        return cls(
            range=BlockRange(offset, len(data)),
            checksum=compute_checksum(data),
            data=data,
        )

    def calculate_checksum(self) -> str:
        return compute_checksum(self.data)

    def verify_checksum(self) -> bool:
        """Check that the data still matches the recorded checksum.

        Returns:
            True if checksum matches and the length agrees with the range.
        """
        return len(self.data) == self.range.size and self.checksum == self.calculate_checksum()
