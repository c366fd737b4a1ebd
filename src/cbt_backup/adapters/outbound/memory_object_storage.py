"""In-memory object storage adapter for tests and dry runs."""

from __future__ import annotations

import threading

from cbt_backup.domain.errors import ObjectNotFoundError


class InMemoryObjectStorage:
    """Object storage held in a dict.

    Thread-safe via an internal lock. ``fail_on`` lets tests inject
    failures for paths containing a given substring.
    """

    def __init__(self, bucket: str = "snapshots") -> None:
        self._bucket = bucket
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.fail_on: dict[str, Exception] = {}
        self.put_count = 0

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def objects(self) -> dict[str, bytes]:
        with self._lock:
            return dict(self._objects)

    def ensure_bucket(self) -> None:
        pass

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self._maybe_fail(path)
        with self._lock:
            self._objects[path] = bytes(data)
            self.put_count += 1

    def get(self, path: str) -> bytes:
        self._maybe_fail(path)
        with self._lock:
            try:
                return self._objects[path]
            except KeyError:
                raise ObjectNotFoundError(f"object not found: {path}", path=path) from None

    def list(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    def exists(self, path: str) -> bool:
        with self._lock:
            return path in self._objects

    def delete(self, path: str) -> None:
        with self._lock:
            self._objects.pop(path, None)

    def _maybe_fail(self, path: str) -> None:
        for fragment, error in self.fail_on.items():
            if fragment in path:
                raise error
