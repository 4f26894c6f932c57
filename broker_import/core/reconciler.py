from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from broker_import.sinks.base import BrokerStore
from .errors import StorageConflict, StorageError, StorageTransient
from .hash_utils import compute_content_hash, same_content
from .schema import BrokerRecord, ImportOutcome

logger = logging.getLogger(__name__)


def build_payload(record: BrokerRecord) -> Dict[str, Any]:
    payload = record.to_payload()
    payload["contentHash"] = compute_content_hash(payload)
    return payload


class Reconciler:
    """
    Idempotent upsert of one BrokerRecord against a BrokerStore.

    created   -> no row for the slug, inserted
    unchanged -> row exists with the same content (extractedAt ignored), no write
    updated   -> row exists with different content, replaced; storage-owned
                 keys of the existing row (id, review aggregates) survive
    failed    -> permanent error, or transient errors past max_retries
    """

    def __init__(
        self,
        store: BrokerStore,
        *,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        sleep: Callable[[float], None] = time.sleep,
        dry_run: bool = False,
    ):
        self.store = store
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.sleep = sleep
        self.dry_run = dry_run

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    def _apply(self, payload: Dict[str, Any]) -> Tuple[str, Optional[str]]:
        slug = payload["slug"]
        existing = self.store.find_by_key(slug)

        if existing is None:
            if self.dry_run:
                return "created", None
            return "created", self.store.insert(payload)

        record_id = existing.get("id")
        if same_content(existing, payload):
            return "unchanged", record_id

        merged = dict(existing)
        merged.update(payload)
        merged["id"] = record_id
        if not self.dry_run:
            self.store.replace(record_id, merged)
        return "updated", record_id

    def reconcile(self, record: BrokerRecord) -> ImportOutcome:
        payload = build_payload(record)
        source_path = record.source_path or ""
        attempts = 0

        while True:
            attempts += 1
            try:
                outcome, record_id = self._apply(payload)
                return ImportOutcome(
                    slug=record.slug,
                    source_path=source_path,
                    outcome=outcome,
                    record_id=record_id,
                    attempts=attempts,
                )
            except StorageTransient as e:
                retry_no = attempts - 1
                if retry_no >= self.max_retries:
                    return ImportOutcome(
                        slug=record.slug,
                        source_path=source_path,
                        outcome="failed",
                        kind=type(e).__name__,
                        reason=f"gave up after {attempts} attempts: {e}",
                        attempts=attempts,
                    )
                delay = self.backoff(retry_no)
                what = "insert conflict, re-reading" if isinstance(e, StorageConflict) else str(e)
                logger.info(
                    "retry %d/%d for %s in %.2fs (%s)",
                    retry_no + 1, self.max_retries, record.slug, delay, what,
                )
                self.sleep(delay)
            except StorageError as e:
                # StoragePermanent or an untyped storage failure
                return ImportOutcome(
                    slug=record.slug,
                    source_path=source_path,
                    outcome="failed",
                    kind=type(e).__name__,
                    reason=str(e),
                    attempts=attempts,
                )
