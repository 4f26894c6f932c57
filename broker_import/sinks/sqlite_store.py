from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from broker_import.core.errors import StorageConflict, StoragePermanent, StorageTransient
from .base import BrokerStore


def _translate(e: sqlite3.Error) -> Exception:
    if isinstance(e, sqlite3.IntegrityError):
        return StorageConflict(str(e), cause=e)
    msg = str(e).lower()
    if isinstance(e, sqlite3.OperationalError) and ("locked" in msg or "busy" in msg):
        return StorageTransient(str(e), cause=e)
    return StoragePermanent(str(e), cause=e)


class SQLiteStore(BrokerStore):
    """
    Local broker table.
    Full record JSON + a few indexed columns; id is assigned by SQLite.

    Notes:
    - slug is UNIQUE, so a racing insert surfaces as StorageConflict
    - total_reviews / avg_review_score belong to the review side; the pipeline
      never sets them, replace() carries whatever the caller merged in
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.execute("PRAGMA synchronous=NORMAL;")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS brokers (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              slug TEXT NOT NULL UNIQUE,
              name TEXT,
              rating REAL,
              min_deposit REAL,
              page_type TEXT,

              content_hash TEXT,
              extracted_at TEXT,

              total_reviews INTEGER DEFAULT 0,
              avg_review_score REAL,

              record_json TEXT
            );
            """
        )
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_brokers_hash ON brokers(content_hash);")
        self.conn.commit()

    def _row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        d = json.loads(row["record_json"] or "{}")
        d["id"] = str(row["id"])
        d["totalReviews"] = row["total_reviews"]
        d["avgReviewScore"] = row["avg_review_score"]
        return d

    def _columns(self, record: Dict[str, Any]) -> tuple:
        body = {k: v for k, v in record.items() if k not in ("id", "totalReviews", "avgReviewScore")}
        return (
            record.get("slug"),
            record.get("name"),
            record.get("rating"),
            record.get("minDeposit"),
            record.get("pageType"),
            record.get("contentHash"),
            record.get("extractedAt"),
            json.dumps(body, ensure_ascii=False),
        )

    def find_by_key(self, slug: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT * FROM brokers WHERE slug = ?;", (slug,)
                ).fetchone()
            except sqlite3.Error as e:
                raise _translate(e) from e
        return self._row_to_dict(row) if row else None

    def insert(self, record: Dict[str, Any]) -> str:
        with self._lock:
            try:
                cur = self.conn.execute(
                    """
                    INSERT INTO brokers (
                      slug, name, rating, min_deposit, page_type,
                      content_hash, extracted_at, record_json
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    self._columns(record),
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise _translate(e) from e
            return str(cur.lastrowid)

    def replace(self, record_id: str, record: Dict[str, Any]) -> None:
        cols = self._columns(record)
        with self._lock:
            try:
                cur = self.conn.execute(
                    """
                    UPDATE brokers SET
                      slug=?, name=?, rating=?, min_deposit=?, page_type=?,
                      content_hash=?, extracted_at=?, record_json=?
                    WHERE id=?;
                    """,
                    cols + (int(record_id),),
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise _translate(e) from e
            if cur.rowcount == 0:
                raise StoragePermanent(f"no broker row with id {record_id}")

    def set_review_stats(self, slug: str, total_reviews: int, avg_review_score: Optional[float]) -> None:
        """
        Review-side writer: the only path that touches total_reviews and
        avg_review_score. The importer never writes them, so an update landing
        between an import's find and replace is kept.
        """
        with self._lock:
            try:
                self.conn.execute(
                    "UPDATE brokers SET total_reviews=?, avg_review_score=? WHERE slug=?;",
                    (total_reviews, avg_review_score, slug),
                )
                self.conn.commit()
            except sqlite3.Error as e:
                raise _translate(e) from e

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM brokers;").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
