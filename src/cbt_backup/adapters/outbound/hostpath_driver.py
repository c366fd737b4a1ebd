"""Host-path snapshot driver over image files.

Implements both SnapshotLifecyclePort and SnapshotMetadataPort so the
whole backup pipeline runs against plain files, without a cluster.

Directory layout::

    <root>/contents/<handle>.img     frozen copy of the volume at snapshot time
    <root>/snapshots/<name>.json     name -> handle binding and status

Deleting a snapshot removes only its name binding. The content, and so
its handle, stays usable for delta computation, matching how CSI drivers
retain snapshot content.

Changed blocks are found by comparing two contents chunk by chunk at a
fixed granularity; adjacent changed chunks are coalesced into one extent.
"""

from __future__ import annotations

import json
import logging
import shutil
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from cbt_backup.domain.errors import (
    SnapshotNotBoundError,
    SnapshotNotReadyError,
)
from cbt_backup.domain.services import CancellationToken
from cbt_backup.domain.value_objects import (
    BlockRange,
    SnapshotHandle,
    SnapshotId,
    VolumeId,
    generate_backup_id,
)
from cbt_backup.ports.outbound import MetadataBatch, SnapshotStatus


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 256


class HostPathSnapshotDriver:
    """Snapshot lifecycle and changed-block metadata for image files.

    Example:
        driver = HostPathSnapshotDriver("/var/lib/cbt-backup/snapshots")
        driver.register_volume("data-pvc", "/images/data.img")
        name = driver.create_snapshot("data-pvc", None, "csi-hostpath-snapclass")
        status = driver.wait_ready(name, timeout=60)
    """

    def __init__(
        self,
        root: str | Path,
        granularity: int = 64 * 1024,
        poll_interval: float = 0.5,
        csi_driver: str = "hostpath.csi.k8s.io",
    ) -> None:
        """Initialize the driver.

        Args:
            root: Directory holding snapshot contents and bindings.
            granularity: Chunk size for delta comparison.
            poll_interval: Seconds between readiness checks.
            csi_driver: Driver name reported in manifests.
        """
        if granularity <= 0:
            raise ValueError(f"granularity must be positive, got {granularity}")
        self._root = Path(root)
        self._granularity = granularity
        self._poll_interval = poll_interval
        self.csi_driver = csi_driver
        self._volumes: dict[str, Path] = {}

        self._contents_dir.mkdir(parents=True, exist_ok=True)
        self._snapshots_dir.mkdir(parents=True, exist_ok=True)

    @property
    def _contents_dir(self) -> Path:
        return self._root / "contents"

    @property
    def _snapshots_dir(self) -> Path:
        return self._root / "snapshots"

    def register_volume(self, volume_id: str, path: str | Path) -> None:
        """Bind a volume identity to the image or device backing it."""
        self._volumes[volume_id] = Path(path)

    def content_path(self, handle: SnapshotHandle) -> Path:
        """Path of a snapshot's frozen content.

        Raises:
            SnapshotNotBoundError: If no content exists for the handle.
        """
        path = self._contents_dir / f"{handle}.img"
        if not handle or not path.is_file():
            raise SnapshotNotBoundError(f"no snapshot content for handle {handle!r}", handle=handle)
        return path

    # -------------------------------------------------------------------------
    # SnapshotLifecyclePort
    # -------------------------------------------------------------------------

    def create_snapshot(
        self,
        volume_id: VolumeId,
        name: str | None,
        snapshot_class: str,
    ) -> SnapshotId:
        source = self._volumes.get(volume_id)
        if source is None or not source.exists():
            raise SnapshotNotBoundError(f"volume {volume_id} has no backing device", volume_id=volume_id)

        snapshot_name = SnapshotId(name or generate_backup_id(volume_id))
        binding = self._binding_path(snapshot_name)
        if binding.exists():
            raise ValueError(f"snapshot {snapshot_name} already exists")

        handle = SnapshotHandle(f"snap-{uuid.uuid4().hex}")
        content = self._contents_dir / f"{handle}.img"
        shutil.copyfile(source, content)

        doc = {
            "name": snapshot_name,
            "volumeID": volume_id,
            "snapshotHandle": handle,
            "snapshotClassName": snapshot_class,
            "driver": self.csi_driver,
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "readyToUse": True,
            "restoreSize": content.stat().st_size,
        }
        binding.write_text(json.dumps(doc, indent=2))

        logger.info("Created snapshot %s of %s (handle %s)", snapshot_name, volume_id, handle)
        return snapshot_name

    def wait_ready(
        self,
        snapshot_id: SnapshotId,
        timeout: float,
        token: CancellationToken | None = None,
    ) -> SnapshotStatus:
        """Poll the binding until the snapshot reports ready.

        Raises:
            SnapshotNotReadyError: If not ready within ``timeout`` seconds.
            OperationCancelledError: If ``token`` is cancelled while polling.
        """
        waiter = token or CancellationToken()
        deadline = time.monotonic() + timeout
        while True:
            waiter.raise_if_cancelled()
            doc = self._read_binding(snapshot_id)
            if doc is not None and doc.get("readyToUse"):
                handle = SnapshotHandle(doc["snapshotHandle"])
                return SnapshotStatus(
                    snapshot_id=snapshot_id,
                    ready=True,
                    size_bytes=int(doc.get("restoreSize", 0)),
                    storage_handle=handle,
                    device_path=str(self.content_path(handle)),
                )
            if doc is not None and doc.get("error"):
                raise SnapshotNotReadyError(
                    f"snapshot {snapshot_id} failed: {doc['error']}", snapshot=snapshot_id
                )
            if time.monotonic() >= deadline:
                raise SnapshotNotReadyError(
                    f"timeout waiting for snapshot {snapshot_id} to become ready",
                    snapshot=snapshot_id,
                    timeout=timeout,
                )
            waiter.wait(self._poll_interval)

    def get_storage_handle(self, snapshot_id: SnapshotId) -> SnapshotHandle:
        doc = self._read_binding(snapshot_id)
        if doc is None:
            raise SnapshotNotBoundError(f"snapshot {snapshot_id} not found", snapshot=snapshot_id)
        handle = doc.get("snapshotHandle")
        if not handle:
            raise SnapshotNotBoundError(
                f"snapshot {snapshot_id} has no bound content", snapshot=snapshot_id
            )
        return SnapshotHandle(handle)

    def delete_snapshot(self, snapshot_id: SnapshotId) -> None:
        self._binding_path(snapshot_id).unlink(missing_ok=True)
        logger.info("Deleted snapshot %s (content retained)", snapshot_id)

    def _binding_path(self, snapshot_id: str) -> Path:
        return self._snapshots_dir / f"{snapshot_id}.json"

    def _read_binding(self, snapshot_id: str) -> dict | None:
        try:
            return json.loads(self._binding_path(snapshot_id).read_text())
        except FileNotFoundError:
            return None

    # -------------------------------------------------------------------------
    # SnapshotMetadataPort
    # -------------------------------------------------------------------------

    def get_metadata_allocated(
        self,
        snapshot_handle: SnapshotHandle,
        starting_offset: int = 0,
        max_results: int = 0,
    ) -> Iterator[MetadataBatch]:
        """Report the whole content as one allocated extent."""
        content = self.content_path(snapshot_handle)
        size = content.stat().st_size

        extents: list[BlockRange] = []
        if starting_offset < size:
            extents.append(BlockRange(starting_offset, size - starting_offset))
        return self._batches(iter(extents), size, max_results)

    def get_metadata_delta(
        self,
        base_snapshot_handle: SnapshotHandle,
        target_snapshot_handle: SnapshotHandle,
        starting_offset: int = 0,
        max_results: int = 0,
    ) -> Iterator[MetadataBatch]:
        """Stream the extents where target content differs from base."""
        base = self.content_path(base_snapshot_handle)
        target = self.content_path(target_snapshot_handle)
        size = target.stat().st_size
        return self._batches(self._diff(base, target, starting_offset), size, max_results)

    def _diff(self, base: Path, target: Path, starting_offset: int) -> Iterator[BlockRange]:
        granularity = self._granularity
        start = (starting_offset // granularity) * granularity
        run_start: int | None = None
        run_end = 0

        with open(base, "rb") as b, open(target, "rb") as t:
            b.seek(start)
            t.seek(start)
            offset = start
            while True:
                new = t.read(granularity)
                if not new:
                    break
                old = b.read(granularity)
                if new != old[: len(new)]:
                    if run_start is None:
                        run_start = offset
                    run_end = offset + len(new)
                elif run_start is not None:
                    yield BlockRange(run_start, run_end - run_start)
                    run_start = None
                offset += len(new)

        if run_start is not None:
            yield BlockRange(run_start, run_end - run_start)

    @staticmethod
    def _batches(
        extents: Iterator[BlockRange], capacity: int, max_results: int
    ) -> Iterator[MetadataBatch]:
        limit = max_results or DEFAULT_BATCH_SIZE
        batch: list[BlockRange] = []
        for extent in extents:
            batch.append(extent)
            if len(batch) >= limit:
                yield MetadataBatch(ranges=batch, volume_capacity_bytes=capacity)
                batch = []
        if batch:
            yield MetadataBatch(ranges=batch, volume_capacity_bytes=capacity)
