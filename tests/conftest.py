"""Pytest configuration and fixtures for cbt_backup tests."""

from __future__ import annotations

import random
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator, Iterator

import pytest
from prometheus_client import CollectorRegistry

from cbt_backup.adapters.outbound.memory_object_storage import InMemoryObjectStorage
from cbt_backup.domain.entities import BackupManifest
from cbt_backup.domain.errors import SnapshotNotBoundError
from cbt_backup.domain.services import BlockStore, Catalog
from cbt_backup.domain.value_objects import BackupId, BlockRange, SnapshotHandle, VolumeId
from cbt_backup.infrastructure.container import Container
from cbt_backup.infrastructure.metrics import BackupMetrics
from cbt_backup.ports.outbound import MetadataBatch


MiB = 1024 * 1024


class ScriptedMetadataService:
    """Metadata service replaying fixed extents per snapshot handle.

    ``allocated`` maps a handle to its extents; ``deltas`` maps a
    (base, target) pair to the changed extents. ``fail_after`` makes the
    first stream raise after that many batches.
    """

    def __init__(
        self,
        allocated: dict[str, list[BlockRange]] | None = None,
        deltas: dict[tuple[str, str], list[BlockRange]] | None = None,
        batch_size: int = 2,
        capacity: int = 0,
    ) -> None:
        self.allocated = allocated or {}
        self.deltas = deltas or {}
        self.batch_size = batch_size
        self.capacity = capacity
        self.fail_after: int | None = None
        self.failure: Exception = ConnectionError("stream reset by peer")
        self.calls: list[tuple[str, int, int]] = []

    def get_metadata_allocated(
        self, snapshot_handle: SnapshotHandle, starting_offset: int = 0, max_results: int = 0
    ) -> Iterator[MetadataBatch]:
        self.calls.append(("allocated", starting_offset, max_results))
        if snapshot_handle not in self.allocated:
            raise SnapshotNotBoundError(f"unknown handle {snapshot_handle}")
        return self._stream(self.allocated[snapshot_handle], starting_offset, max_results)

    def get_metadata_delta(
        self,
        base_snapshot_handle: SnapshotHandle,
        target_snapshot_handle: SnapshotHandle,
        starting_offset: int = 0,
        max_results: int = 0,
    ) -> Iterator[MetadataBatch]:
        self.calls.append(("delta", starting_offset, max_results))
        key = (base_snapshot_handle, target_snapshot_handle)
        if key not in self.deltas:
            raise SnapshotNotBoundError(f"unknown handle pair {key}")
        return self._stream(self.deltas[key], starting_offset, max_results)

    def _stream(
        self, extents: list[BlockRange], starting_offset: int, max_results: int
    ) -> Iterator[MetadataBatch]:
        # Like a real server, include the extent containing starting_offset.
        selected = [e for e in extents if e.end > starting_offset]
        size = max_results or self.batch_size
        fail_after, self.fail_after = self.fail_after, None
        for sent, i in enumerate(range(0, len(selected), size)):
            if fail_after is not None and sent >= fail_after:
                raise self.failure
            yield MetadataBatch(ranges=selected[i : i + size], volume_capacity_bytes=self.capacity)


def write_image(path: Path, size: int, seed: int = 0) -> bytes:
    """Write ``size`` deterministic pseudo-random bytes to ``path``."""
    data = random.Random(seed).randbytes(size)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return data


def make_manifest(**overrides) -> BackupManifest:
    """Build an incremental manifest of vol-a; keyword arguments override fields."""
    fields = dict(
        backup_id=BackupId("vol-a-snapshot-2"),
        volume_id=VolumeId("vol-a"),
        volume_size=4 * MiB,
        is_incremental=True,
        total_ranges=1,
        total_bytes=512 * 1024,
        base_backup_id=BackupId("vol-a-snapshot-1"),
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        namespace="demo",
        snapshot_name="vol-a-snapshot-2",
        snapshot_handle=SnapshotHandle("snap-2"),
        csi_driver="hostpath.csi.k8s.io",
    )
    fields.update(overrides)
    return BackupManifest(**fields)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def metrics() -> BackupMetrics:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return BackupMetrics(registry=registry)


@pytest.fixture
def scripted_metadata() -> type[ScriptedMetadataService]:
    """Provide the scripted metadata service class."""
    return ScriptedMetadataService


@pytest.fixture
def manifest_factory() -> Callable[..., BackupManifest]:
    return make_manifest


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def block_store(storage: InMemoryObjectStorage) -> BlockStore:
    return BlockStore(storage)


@pytest.fixture
def catalog(block_store: BlockStore) -> Catalog:
    return Catalog(block_store)


@pytest.fixture
def image_factory(temp_dir: Path) -> Callable[..., tuple[Path, bytes]]:
    """Create image files with deterministic content."""

    def make(name: str, size: int, seed: int = 0) -> tuple[Path, bytes]:
        path = temp_dir / "images" / name
        return path, write_image(path, size, seed)

    return make


@pytest.fixture(autouse=True)
def reset_container() -> Generator[None, None, None]:
    """Never leak the process-wide container between tests."""
    Container.reset()
    yield
    Container.reset()


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
