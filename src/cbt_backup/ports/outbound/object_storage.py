"""Object storage port.

The object store is an opaque key/value blob store under one bucket.
Implementations may be S3-compatible services, a local directory, or
memory.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable


@runtime_checkable
class ObjectStoragePort(Protocol):
    """Protocol for blob storage keyed by path strings.

    Thread Safety:
        All methods must be safe to call from worker-pool threads.

    Errors:
        Transport failures raise ConnectivityError. A missing object on
        ``get`` raises ObjectNotFoundError.
    """

    @property
    @abstractmethod
    def bucket(self) -> str:
        """Name of the bucket/namespace all paths live under."""
        ...

    @abstractmethod
    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist."""
        ...

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        """Store ``data`` at ``path``, replacing any existing object.

        Args:
            path: Object key.
            data: Object bytes.
            content_type: MIME type recorded with the object.
        """
        ...

    @abstractmethod
    def get(self, path: str) -> bytes:
        """Fetch the object at ``path``.

        Raises:
            ObjectNotFoundError: If no object exists at ``path``.
        """
        ...

    @abstractmethod
    def list(self, prefix: str) -> list[str]:
        """List object paths starting with ``prefix``, sorted."""
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete the object at ``path``. Deleting a missing object is a no-op."""
        ...
