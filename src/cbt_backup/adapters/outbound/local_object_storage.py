"""Local directory object storage adapter.

Objects are files under ``<root>/<bucket>/<path>``. Writes go to a
temporary file that is renamed into place, so a reader never sees a
partially written object.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from cbt_backup.domain.errors import ConnectivityError, ObjectNotFoundError


logger = logging.getLogger(__name__)


class LocalObjectStorage:
    """Object storage in a local directory (``file://`` endpoints)."""

    def __init__(self, root: str | Path, bucket: str) -> None:
        self._root = Path(root)
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def base_path(self) -> Path:
        return self._root / self._bucket

    def ensure_bucket(self) -> None:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConnectivityError(f"cannot create bucket directory: {e}", path=str(self.base_path)) from e

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ConnectivityError(f"failed to write object: {e}", path=path) from e

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"object not found: {path}", path=path) from e
        except OSError as e:
            raise ConnectivityError(f"failed to read object: {e}", path=path) from e

    def list(self, prefix: str) -> list[str]:
        base = self.base_path
        if not base.exists():
            return []
        keys = []
        for file in base.rglob("*"):
            if not file.is_file() or file.name.startswith(".tmp-"):
                continue
            key = file.relative_to(base).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def delete(self, path: str) -> None:
        try:
            self._resolve(path).unlink(missing_ok=True)
        except OSError as e:
            raise ConnectivityError(f"failed to delete object: {e}", path=path) from e

    def _resolve(self, path: str) -> Path:
        target = (self.base_path / path).resolve()
        if not target.is_relative_to(self.base_path.resolve()):
            raise ValueError(f"object path escapes bucket: {path}")
        return target
