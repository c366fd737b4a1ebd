"""Error taxonomy for backup and restore operations.

Every error carries a ``context`` dict naming the step and identifiers
involved. Errors are raised where the failure is detected and propagate
unwrapped to the engine boundary; callers enrich them on the way with
``with_context``.

Example:
    try:
        store.get_block(backup_id, block_range)
    except BlockIntegrityError as e:
        raise e.with_context(step="restore", chain_member=backup_id)
"""

from __future__ import annotations

from typing import Any


class CBTBackupError(Exception):
    """Base class for all backup engine errors."""

    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context)
        # Set by the engine that aborted: BackupStats or RestoreStats so far.
        self.stats: Any = None

    def with_context(self, **context: Any) -> CBTBackupError:
        """Attach context without overwriting keys set closer to the failure."""
        for key, value in context.items():
            self.context.setdefault(key, value)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"


class ConnectivityError(CBTBackupError):
    """Orchestration API or object store unreachable.

    Retryable by the caller; never retried internally.
    """

    retryable = True


class SnapshotNotReadyError(CBTBackupError):
    """Snapshot did not become ready within its timeout."""


class SnapshotNotBoundError(CBTBackupError):
    """Snapshot has no bound content / storage handle could not be resolved."""


class DiscoveryStreamError(CBTBackupError):
    """Change-set enumeration failed mid-stream.

    Attributes:
        cursor: Highest offset yielded before the failure, usable as the
            ``starting_offset`` of a resumed request.
    """

    def __init__(self, message: str, cursor: int = 0, **context: Any) -> None:
        super().__init__(message, **context)
        self.cursor = cursor


class DeviceReadError(CBTBackupError):
    """Reading from the source device failed."""


class PartialWriteError(CBTBackupError):
    """Fewer bytes than requested reached the destination device.

    Fatal: the destination is inconsistent and the restore must abort.
    """


class BlockIntegrityError(CBTBackupError):
    """A stored block failed checksum verification or is missing."""


class BackupNotFoundError(CBTBackupError):
    """Requested backup is not present in the catalog."""


class ChainIntegrityError(CBTBackupError):
    """A chain references a backup that is absent from the catalog."""


class BackupAlreadyExistsError(CBTBackupError):
    """A published backup with this ID already exists (published backups are immutable)."""


class ObjectNotFoundError(CBTBackupError):
    """Object storage has no object at the requested path."""


class OperationCancelledError(CBTBackupError):
    """The operation observed a cancellation request and aborted."""


class OperationTimeoutError(OperationCancelledError):
    """The operation exceeded its deadline and aborted."""


__all__ = [
    "CBTBackupError",
    "ConnectivityError",
    "SnapshotNotReadyError",
    "SnapshotNotBoundError",
    "DiscoveryStreamError",
    "DeviceReadError",
    "PartialWriteError",
    "BlockIntegrityError",
    "BackupNotFoundError",
    "ChainIntegrityError",
    "BackupAlreadyExistsError",
    "ObjectNotFoundError",
    "OperationCancelledError",
    "OperationTimeoutError",
]
