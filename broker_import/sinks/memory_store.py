from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List, Optional, Tuple

from broker_import.core.errors import StorageConflict, StoragePermanent
from .base import BrokerStore

STORAGE_OWNED_KEYS = ("totalReviews", "avgReviewScore")


class MemoryStore(BrokerStore):
    """
    Dict-backed store for dry runs and tests.
    Keeps a write log so callers can assert "zero writes".
    """

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self._lock = threading.Lock()
        self._by_id: Dict[str, Dict[str, Any]] = {}
        self._slug_to_id: Dict[str, str] = {}
        self._next_id = 1
        self.writes: List[Tuple[str, str]] = []  # (op, slug)

        for row in rows or []:
            self.insert(row)
        self.writes.clear()

    def find_by_key(self, slug: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            rid = self._slug_to_id.get(slug)
            if rid is None:
                return None
            return copy.deepcopy(self._by_id[rid])

    def insert(self, record: Dict[str, Any]) -> str:
        slug = record.get("slug")
        if not slug:
            raise StoragePermanent("record without slug")
        with self._lock:
            if slug in self._slug_to_id:
                raise StorageConflict(f"slug already exists: {slug}")
            rid = str(record.get("id") or self._next_id)
            self._next_id += 1
            row = copy.deepcopy(record)
            row["id"] = rid
            self._by_id[rid] = row
            self._slug_to_id[slug] = rid
            self.writes.append(("insert", slug))
            return rid

    def replace(self, record_id: str, record: Dict[str, Any]) -> None:
        with self._lock:
            if record_id not in self._by_id:
                raise StoragePermanent(f"no row with id {record_id}")
            current = self._by_id[record_id]
            old_slug = current.get("slug")
            row = copy.deepcopy(record)
            # review aggregates belong to the store, not the caller
            for k in STORAGE_OWNED_KEYS:
                if k in current:
                    row[k] = current[k]
                else:
                    row.pop(k, None)
            row["id"] = record_id
            self._by_id[record_id] = row
            new_slug = row.get("slug")
            if new_slug != old_slug:
                self._slug_to_id.pop(old_slug, None)
                self._slug_to_id[new_slug] = record_id
            self.writes.append(("replace", new_slug))

    def set_review_stats(self, slug: str, total_reviews: int, avg_review_score: Optional[float]) -> None:
        with self._lock:
            rid = self._slug_to_id.get(slug)
            if rid is None:
                return
            self._by_id[rid]["totalReviews"] = total_reviews
            self._by_id[rid]["avgReviewScore"] = avg_review_score

    def all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._by_id.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)
