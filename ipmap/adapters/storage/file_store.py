"""JSON file tier for the snapshot cache.

Notes:
- Writes are atomic (temp file + rename) so readers never observe a partial
  document.
- The parsed snapshot is reused while the file's mtime and size are
  unchanged; the upstream document is large and the read path runs on
  every request.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from ipmap.adapters.storage.base import AbstractSnapshotStore
from ipmap.core.errors import CacheStorageError
from ipmap.models.snapshot import VersionedSnapshot

logger = logging.getLogger(__name__)


class FileSnapshotStore(AbstractSnapshotStore):
    """Durable tier storing a single snapshot as a JSON file."""

    name = "durable"

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._loaded: tuple[tuple[int, int], VersionedSnapshot] | None = None

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"FileSnapshotStore(path={str(self._path)!r})"

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> VersionedSnapshot | None:
        """Load the snapshot from disk.

        Returns:
            The stored snapshot, or None if the file does not exist.

        Raises:
            CacheStorageError: If the file cannot be read or is not a valid record.
        """
        with self._lock:
            try:
                stat = self._path.stat()
            except FileNotFoundError:
                self._loaded = None
                return None
            except OSError as exc:
                raise CacheStorageError(
                    code="cache_read_failed",
                    message=f"Cannot stat snapshot file: {exc}",
                    details={"tier": self.name},
                ) from exc

            signature = (stat.st_mtime_ns, stat.st_size)
            if self._loaded is not None and self._loaded[0] == signature:
                return self._loaded[1]

            try:
                raw = self._path.read_text(encoding="utf-8")
                record = json.loads(raw)
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
                raise CacheStorageError(
                    code="cache_read_failed",
                    message=f"Cannot read snapshot file: {exc}",
                    details={"tier": self.name},
                ) from exc

            if not isinstance(record, dict):
                raise CacheStorageError(
                    code="cache_record_invalid",
                    message="Persisted snapshot record is not a JSON object",
                    details={"tier": self.name},
                )

            snapshot = VersionedSnapshot.from_record(record)
            self._loaded = (signature, snapshot)
            logger.debug(
                "cache.durable_loaded",
                extra={"path": str(self._path), "size_bytes": stat.st_size},
            )
            return snapshot

    def write(self, snapshot: VersionedSnapshot) -> None:
        """Persist the snapshot atomically.

        Raises:
            CacheStorageError: If the directory or file cannot be written.
        """
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self._path.parent,
                    prefix=f".{self._path.name}.",
                    suffix=".tmp",
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        json.dump(snapshot.to_record(), handle)
                    os.replace(tmp_name, self._path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except (OSError, TypeError, ValueError) as exc:
                raise CacheStorageError(
                    code="cache_write_failed",
                    message=f"Cannot write snapshot file: {exc}",
                    details={"tier": self.name},
                ) from exc

            # Next read re-parses; the stat signature changed with the rename.
            self._loaded = None

    def delete(self) -> bool:
        with self._lock:
            self._loaded = None
            try:
                self._path.unlink()
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise CacheStorageError(
                    code="cache_clear_failed",
                    message=f"Cannot delete snapshot file: {exc}",
                    details={"tier": self.name},
                ) from exc
            return True

    def size_bytes(self) -> int | None:
        try:
            return self._path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheStorageError(
                code="cache_read_failed",
                message=f"Cannot stat snapshot file: {exc}",
                details={"tier": self.name},
            ) from exc
