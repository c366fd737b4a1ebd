"""Change-set discovery over the snapshot metadata stream.

The resolver turns the metadata service's batches into the ordered,
non-overlapping, block-aligned ranges a backup must copy.

Stream semantics:
    - Lazy: nothing is requested until the first range is consumed.
    - Finite: ends when the server's stream ends.
    - Not restartable: a stream is consumed once. After a failure,
      ``resume()`` issues a new request whose ``starting_offset`` is the
      highest offset already yielded. Extents re-sent across that
      boundary are trimmed against what was already yielded.

References:
    - CSI SnapshotMetadata GetMetadataAllocated / GetMetadataDelta
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Iterator

from cbt_backup.domain.errors import (
    CBTBackupError,
    DiscoveryStreamError,
    SnapshotNotBoundError,
)
from cbt_backup.domain.services.cancellation import CancellationToken
from cbt_backup.domain.value_objects import DEFAULT_BLOCK_SIZE, BlockRange, SnapshotHandle
from cbt_backup.ports.outbound import MetadataBatch, SnapshotMetadataPort


logger = logging.getLogger(__name__)

StreamOpener = Callable[[int], Iterator[MetadataBatch]]


class ChangedRangeStream:
    """Iterator over the ranges produced by one discovery request.

    Attributes:
        cursor: Offset of the last range yielded (resume point).
        volume_capacity: Largest volume capacity the server reported.
    """

    def __init__(
        self,
        open_stream: StreamOpener,
        block_size: int,
        description: str,
        starting_offset: int = 0,
        yielded_end: int = 0,
        token: CancellationToken | None = None,
    ) -> None:
        self._open_stream = open_stream
        self._block_size = block_size
        self._description = description
        self._starting_offset = starting_offset
        self._token = token

        self._batches: Iterator[MetadataBatch] | None = None
        self._pending: deque[BlockRange] = deque()
        self._fill_end = yielded_end
        self._yielded_end = yielded_end
        self._exhausted = False
        self._failed = False

        self.cursor = starting_offset
        self.volume_capacity = 0
        self.ranges_yielded = 0

    def __iter__(self) -> ChangedRangeStream:
        return self

    def __next__(self) -> BlockRange:
        if self._failed:
            raise DiscoveryStreamError(
                "discovery stream already failed; call resume()",
                cursor=self.cursor,
                stream=self._description,
            )

        while not self._pending:
            if self._exhausted:
                raise StopIteration
            if self._token is not None:
                self._token.raise_if_cancelled()
            self._fill()

        block_range = self._pending.popleft()
        self.cursor = block_range.offset
        self._yielded_end = max(self._yielded_end, block_range.end)
        self.ranges_yielded += 1
        return block_range

    def open(self) -> ChangedRangeStream:
        """Send the request and receive the first batch.

        Errors for an unknown handle surface here instead of on the first
        iteration. Calling it again, or after iteration began, is a no-op.

        Raises:
            SnapshotNotBoundError: If the server does not know a handle.
            DiscoveryStreamError: If the request or first batch fails.
        """
        if self._batches is None and not self._failed:
            if self._token is not None:
                self._token.raise_if_cancelled()
            self._fill()
        return self

    def resume(self) -> ChangedRangeStream:
        """Open a fresh stream continuing after the last yielded range."""
        logger.info(
            "Resuming %s discovery from offset %d after %d ranges",
            self._description,
            self.cursor,
            self.ranges_yielded,
        )
        return ChangedRangeStream(
            self._open_stream,
            self._block_size,
            self._description,
            starting_offset=self.cursor,
            yielded_end=self._yielded_end,
            token=self._token,
        )

    def _fill(self) -> None:
        """Pull the next batch from the server into the pending queue."""
        try:
            if self._batches is None:
                self._batches = iter(self._open_stream(self._starting_offset))
            batch = next(self._batches)
        except StopIteration:
            self._exhausted = True
            return
        except SnapshotNotBoundError:
            self._failed = True
            raise
        except CBTBackupError as e:
            self._failed = True
            if isinstance(e, DiscoveryStreamError):
                e.cursor = self.cursor
                raise
            raise DiscoveryStreamError(
                f"error receiving block metadata: {e}",
                cursor=self.cursor,
                stream=self._description,
            ) from e
        except Exception as e:
            self._failed = True
            raise DiscoveryStreamError(
                f"error receiving block metadata: {e}",
                cursor=self.cursor,
                stream=self._description,
            ) from e

        if batch.volume_capacity_bytes > self.volume_capacity:
            self.volume_capacity = batch.volume_capacity_bytes

        for extent in batch.ranges:
            self._enqueue(extent)

    def _enqueue(self, extent: BlockRange) -> None:
        # Drop or trim anything already covered so ranges never overlap.
        if extent.end <= self._fill_end:
            return
        if extent.offset < self._fill_end:
            extent = BlockRange(self._fill_end, extent.end - self._fill_end)

        self._pending.extend(extent.split(self._block_size))
        self._fill_end = extent.end


class ChangeSetResolver:
    """Discovers the ranges to back up for a full or incremental backup.

    Snapshots are always identified by their storage handle. Names are
    not accepted: a named snapshot may be deleted while its content, and
    therefore its handle, stays valid for delta computation.

    Example:
        resolver = ChangeSetResolver(metadata_service, block_size=1024 * 1024)
        for block_range in resolver.discover_delta(base_handle, target_handle):
            ...
    """

    def __init__(
        self,
        metadata_service: SnapshotMetadataPort,
        block_size: int = DEFAULT_BLOCK_SIZE,
        max_results: int = 0,
    ) -> None:
        """Initialize the resolver.

        Args:
            metadata_service: Changed-block metadata service.
            block_size: Alignment granularity of produced ranges.
            max_results: Per-batch cap sent to the server (0 = server decides).
        """
        if block_size <= 0:
            raise ValueError(f"block_size must be positive, got {block_size}")
        if max_results < 0:
            raise ValueError(f"max_results must be non-negative, got {max_results}")
        self._service = metadata_service
        self._block_size = block_size
        self._max_results = max_results

    @property
    def block_size(self) -> int:
        return self._block_size

    def discover(
        self,
        target_handle: SnapshotHandle,
        token: CancellationToken | None = None,
    ) -> ChangedRangeStream:
        """Ranges of a full backup: every allocated extent of the target.

        Raises:
            SnapshotNotBoundError: If the handle is empty.
        """
        self._require_handle(target_handle, "target")

        def open_stream(starting_offset: int) -> Iterator[MetadataBatch]:
            return self._service.get_metadata_allocated(
                target_handle,
                starting_offset=starting_offset,
                max_results=self._max_results,
            )

        return ChangedRangeStream(
            open_stream, self._block_size, f"allocated:{target_handle}", token=token
        )

    def discover_delta(
        self,
        base_handle: SnapshotHandle,
        target_handle: SnapshotHandle,
        token: CancellationToken | None = None,
    ) -> ChangedRangeStream:
        """Ranges of an incremental backup: extents changed since the base.

        Raises:
            SnapshotNotBoundError: If either handle is empty.
        """
        self._require_handle(base_handle, "base")
        self._require_handle(target_handle, "target")

        def open_stream(starting_offset: int) -> Iterator[MetadataBatch]:
            return self._service.get_metadata_delta(
                base_handle,
                target_handle,
                starting_offset=starting_offset,
                max_results=self._max_results,
            )

        return ChangedRangeStream(
            open_stream,
            self._block_size,
            f"delta:{base_handle}..{target_handle}",
            token=token,
        )

    @staticmethod
    def _require_handle(handle: SnapshotHandle | None, role: str) -> None:
        if not handle:
            raise SnapshotNotBoundError(f"{role} snapshot has no storage handle", role=role)
