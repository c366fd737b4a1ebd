"""Snapshot ports: lifecycle management and changed-block metadata.

Two collaborators back the engine: the orchestration API that creates,
waits for and deletes snapshots, and the snapshot metadata service that
streams allocated or changed block extents between snapshot contents.
Both identify snapshot content by its storage handle.

References:
    - CSI SnapshotMetadata service (GetMetadataAllocated / GetMetadataDelta)
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, Protocol

from cbt_backup.domain.value_objects import BlockRange, SnapshotHandle, SnapshotId, VolumeId

if TYPE_CHECKING:
    from cbt_backup.domain.services import CancellationToken


# =============================================================================
# Snapshot Lifecycle Port
# =============================================================================


@dataclass(frozen=True)
class SnapshotStatus:
    """Readiness of a snapshot as reported by the orchestration API."""

    snapshot_id: SnapshotId
    ready: bool
    size_bytes: int = 0
    storage_handle: SnapshotHandle | None = None
    error: str | None = None
    device_path: str | None = None  # where the snapshot content can be read, if exposed


class SnapshotLifecyclePort(Protocol):
    """Protocol for volume snapshot lifecycle operations.

    Errors:
        ConnectivityError when the orchestration API is unreachable,
        SnapshotNotReadyError when a wait times out or the snapshot
        reports an error, SnapshotNotBoundError when no content is bound.
    """

    @abstractmethod
    def create_snapshot(
        self,
        volume_id: VolumeId,
        name: str | None,
        snapshot_class: str,
    ) -> SnapshotId:
        """Request a snapshot of a volume.

        Args:
            volume_id: Volume to snapshot.
            name: Snapshot name; generated when None.
            snapshot_class: Snapshot class to use.

        Returns:
            The created snapshot's name.
        """
        ...

    @abstractmethod
    def wait_ready(
        self,
        snapshot_id: SnapshotId,
        timeout: float,
        token: CancellationToken | None = None,
    ) -> SnapshotStatus:
        """Block until the snapshot is ready to use.

        Raises:
            SnapshotNotReadyError: If not ready within ``timeout`` seconds.
            OperationCancelledError: If ``token`` is cancelled while waiting.
        """
        ...

    @abstractmethod
    def get_storage_handle(self, snapshot_id: SnapshotId) -> SnapshotHandle:
        """Resolve the storage handle bound to a snapshot.

        Raises:
            SnapshotNotBoundError: If the snapshot has no bound content.
        """
        ...

    @abstractmethod
    def delete_snapshot(self, snapshot_id: SnapshotId) -> None:
        ...


# =============================================================================
# Snapshot Metadata (CBT) Port
# =============================================================================


@dataclass(frozen=True)
class MetadataBatch:
    """One message of a metadata stream."""

    ranges: list[BlockRange] = field(default_factory=list)
    volume_capacity_bytes: int = 0


class SnapshotMetadataPort(Protocol):
    """Protocol for the changed-block-tracking metadata service.

    Both calls return a stream of batches covering extents at or after
    ``starting_offset`` in ascending offset order. The stream ends when
    the iterator is exhausted. ``max_results`` caps the ranges per batch;
    0 lets the server decide.

    Errors:
        SnapshotNotBoundError for an unknown handle. Transport failures
        while iterating may surface as any exception; the resolver turns
        them into DiscoveryStreamError.
    """

    @abstractmethod
    def get_metadata_allocated(
        self,
        snapshot_handle: SnapshotHandle,
        starting_offset: int = 0,
        max_results: int = 0,
    ) -> Iterator[MetadataBatch]:
        """Stream the allocated extents of one snapshot."""
        ...

    @abstractmethod
    def get_metadata_delta(
        self,
        base_snapshot_handle: SnapshotHandle,
        target_snapshot_handle: SnapshotHandle,
        starting_offset: int = 0,
        max_results: int = 0,
    ) -> Iterator[MetadataBatch]:
        """Stream the extents that differ between two snapshots."""
        ...
