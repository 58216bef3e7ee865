"""Durable snapshot tier interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ipmap.models.snapshot import VersionedSnapshot


class AbstractSnapshotStore(ABC):
    """Interface for the durable tier of the snapshot cache.

    Implementations raise on failure; the tiered cache is responsible for
    degrading errors to "absent".
    """

    name: str = "durable"

    @abstractmethod
    def read(self) -> VersionedSnapshot | None:
        """Return the stored snapshot, or None if nothing is stored.

        Raises:
            CacheStorageError: If the stored record cannot be read or parsed.
        """
        raise NotImplementedError

    @abstractmethod
    def write(self, snapshot: VersionedSnapshot) -> None:
        """Persist the snapshot, replacing any previous one."""
        raise NotImplementedError

    @abstractmethod
    def delete(self) -> bool:
        """Remove the stored snapshot. Returns False if there was nothing to remove."""
        raise NotImplementedError

    @abstractmethod
    def size_bytes(self) -> int | None:
        """Size of the persisted record, or None if nothing is stored."""
        raise NotImplementedError
