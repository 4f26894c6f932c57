# tests/test_reconciler.py
"""Idempotent upsert, retry and backoff behaviour."""

from broker_import.core.errors import StorageConflict, StorageTransient
from broker_import.core.hash_utils import compute_content_hash, same_content
from broker_import.core.reconciler import Reconciler, build_payload
from broker_import.core.schema import BrokerRecord
from broker_import.sinks.memory_store import MemoryStore


def _record(**overrides) -> BrokerRecord:
    base = dict(
        slug="bdswiss",
        name="BDSwiss",
        rating=4.0,
        regulations=("FCA", "CySEC"),
        min_deposit=100.0,
        min_deposit_currency="USD",
        extracted_at="2025-01-01T00:00:00+00:00",
        source_path="pages/bdswiss-review.html",
    )
    base.update(overrides)
    return BrokerRecord(**base)


class TestContentHash:

    def test_extracted_at_and_storage_keys_ignored(self):
        a = build_payload(_record())
        b = dict(a, extractedAt="2030-01-01T00:00:00+00:00", id="7", totalReviews=3)
        assert same_content(a, b)

    def test_real_change_detected(self):
        assert not same_content(build_payload(_record()), build_payload(_record(rating=3.5)))

    def test_payload_carries_hash(self):
        payload = build_payload(_record())
        assert payload["contentHash"] == compute_content_hash(payload)
        assert "flags" not in payload


class TestOutcomes:

    def test_created_then_unchanged(self, memory_store):
        rec = Reconciler(memory_store)
        first = rec.reconcile(_record())
        assert first.outcome == "created"
        assert first.record_id is not None

        second = rec.reconcile(_record(extracted_at="2025-02-01T00:00:00+00:00"))
        assert second.outcome == "unchanged"
        assert second.record_id == first.record_id
        assert memory_store.writes == [("insert", "bdswiss")]

    def test_update_keeps_storage_owned_fields(self):
        store = MemoryStore(rows=[dict(build_payload(_record()), totalReviews=12, avgReviewScore=4.2)])
        existing_id = store.find_by_key("bdswiss")["id"]

        out = Reconciler(store).reconcile(_record(rating=3.0))
        assert out.outcome == "updated"
        row = store.find_by_key("bdswiss")
        assert row["id"] == existing_id
        assert row["rating"] == 3.0
        assert row["totalReviews"] == 12
        assert row["avgReviewScore"] == 4.2

    def test_dry_run_never_writes(self, memory_store):
        out = Reconciler(memory_store, dry_run=True).reconcile(_record())
        assert out.outcome == "created"
        assert out.record_id is None
        assert len(memory_store) == 0
        assert memory_store.writes == []

    def test_dry_run_reports_update(self):
        store = MemoryStore(rows=[build_payload(_record())])
        out = Reconciler(store, dry_run=True).reconcile(_record(name="BDSwiss Group"))
        assert out.outcome == "updated"
        assert store.find_by_key("bdswiss")["name"] == "BDSwiss"


class TestRetries:

    def test_transient_then_success(self, flaky_store, fake_sleep, sleeps):
        store = flaky_store(failures=2)
        out = Reconciler(store, max_retries=3, sleep=fake_sleep).reconcile(_record())
        assert out.outcome == "created"
        assert out.attempts == 3
        assert sleeps == [0.5, 1.0]

    def test_transient_exhausted(self, flaky_store, fake_sleep, sleeps):
        store = flaky_store(failures=100)
        out = Reconciler(store, max_retries=3, sleep=fake_sleep).reconcile(_record())
        assert out.outcome == "failed"
        assert out.kind == "StorageTransient"
        assert out.attempts == 4
        assert sleeps == [0.5, 1.0, 2.0]
        assert store.writes == []

    def test_permanent_fails_immediately(self, flaky_store, permanent_error, fake_sleep, sleeps):
        store = flaky_store(failures=100, error=permanent_error)
        out = Reconciler(store, max_retries=3, sleep=fake_sleep).reconcile(_record())
        assert out.outcome == "failed"
        assert out.kind == "StoragePermanent"
        assert out.attempts == 1
        assert sleeps == []

    def test_backoff_capped(self):
        rec = Reconciler(MemoryStore(), backoff_base=1.0, backoff_max=3.0)
        assert [rec.backoff(i) for i in range(4)] == [1.0, 2.0, 3.0, 3.0]

    def test_insert_conflict_rereads_and_updates(self, racing_store, fake_sleep):
        competitor = build_payload(_record(name="BDSwiss (other writer)"))
        store = racing_store(competitor)
        out = Reconciler(store, sleep=fake_sleep).reconcile(_record())
        assert out.outcome == "updated"
        assert out.attempts == 2
        assert len(store) == 1
        assert store.find_by_key("bdswiss")["name"] == "BDSwiss"

    def test_conflict_is_transient(self):
        assert issubclass(StorageConflict, StorageTransient)


class TestStorageOwnedFields:

    def test_memory_store_keeps_review_update_made_after_lookup(self):
        class ReviewRacingStore(MemoryStore):
            def find_by_key(self, slug):
                row = super().find_by_key(slug)
                if row is not None:
                    self.set_review_stats(slug, 11, 3.9)
                return row

        store = ReviewRacingStore(rows=[dict(build_payload(_record()), totalReviews=10, avgReviewScore=4.0)])
        assert Reconciler(store).reconcile(_record(rating=3.0)).outcome == "updated"
        row = store.all()[0]
        assert row["rating"] == 3.0
        assert row["totalReviews"] == 11

    def test_new_fields_count_as_changes(self):
        base = build_payload(_record())
        assert not same_content(base, build_payload(_record(leverage="1:500")))
        assert not same_content(base, build_payload(_record(spread=0.6)))
        assert same_content(
            build_payload(_record(account_types=("ECN Account", "Standard Account"))),
            build_payload(_record(account_types=("Standard Account", "ECN Account"))),
        )
