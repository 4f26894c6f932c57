from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class BrokerStore(ABC):
    """
    Key-value-like broker storage, keyed by slug.

    Every method raises StorageTransient (retryable), StorageConflict
    (insert lost a race on the key) or StoragePermanent.
    Stored rows are plain dicts carrying the storage-assigned "id".
    """

    @abstractmethod
    def find_by_key(self, slug: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def insert(self, record: Dict[str, Any]) -> str:
        """Insert a new row; must fail with StorageConflict if slug exists. Returns id."""
        ...

    @abstractmethod
    def replace(self, record_id: str, record: Dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        pass

    def __enter__(self) -> "BrokerStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
