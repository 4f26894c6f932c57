from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from broker_import.core.errors import StorageConflict, StoragePermanent, StorageTransient
from .base import BrokerStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

# payload key -> column in the hosted `brokers` table
COLUMN_MAP: Dict[str, str] = {
    "id": "id",
    "slug": "slug",
    "name": "name",
    "rating": "avg_rating",
    "description": "description",
    "regulations": "regulations",
    "minDeposit": "min_deposit",
    "minDepositCurrency": "min_deposit_currency",
    "foundedYear": "established_year",
    "platforms": "platforms",
    "spread": "spreads_avg",
    "leverage": "leverage_max",
    "accountTypes": "account_types",
    "pageType": "page_type",
    "extractedAt": "extracted_at",
    "sourcePath": "source_path",
    "contentHash": "content_hash",
    "schemaVersion": "schema_version",
    "totalReviews": "total_reviews",
    "avgReviewScore": "avg_review_score",
}
_REVERSE_MAP = {v: k for k, v in COLUMN_MAP.items()}

# review aggregates are maintained server-side; never sent by the importer
_READ_ONLY_COLUMNS = {"id", "total_reviews", "avg_review_score"}


def to_row(payload: Dict[str, Any]) -> Dict[str, Any]:
    row: Dict[str, Any] = {}
    for k, v in payload.items():
        col = COLUMN_MAP.get(k)
        if col and col not in _READ_ONLY_COLUMNS:
            row[col] = v
    return row


def from_row(row: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for col, v in row.items():
        key = _REVERSE_MAP.get(col, col)
        out[key] = v
    if out.get("id") is not None:
        out["id"] = str(out["id"])
    return out


class RestStore(BrokerStore):
    """
    PostgREST (Supabase) broker table over HTTP.

    Retries are NOT done here; the reconciler owns retry policy.
    This class only translates HTTP failures into the storage taxonomy.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        table: str = "brokers",
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self.timeout = timeout
        self.session = session or self._create_session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        adapter = requests.adapters.HTTPAdapter(
            pool_connections=10,
            pool_maxsize=10,
            max_retries=0,
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _request(self, method: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            resp = self.session.request(method, self.endpoint, **kwargs)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise StorageTransient(f"{method} {self.endpoint}: {e}", cause=e) from e
        except requests.exceptions.RequestException as e:
            raise StoragePermanent(f"{method} {self.endpoint}: {e}", cause=e) from e

        status = resp.status_code
        if status < 400:
            return resp
        detail = f"{method} {self.endpoint} -> HTTP {status}: {resp.text[:200]}"
        if status == 409:
            raise StorageConflict(detail)
        if status == 429 or status >= 500:
            raise StorageTransient(detail)
        raise StoragePermanent(detail)

    def find_by_key(self, slug: str) -> Optional[Dict[str, Any]]:
        resp = self._request("GET", params={"slug": f"eq.{slug}", "select": "*", "limit": "1"})
        rows = resp.json() or []
        if not rows:
            return None
        return from_row(rows[0])

    def insert(self, record: Dict[str, Any]) -> str:
        resp = self._request(
            "POST",
            json=to_row(record),
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json() or []
        if not rows or rows[0].get("id") is None:
            raise StoragePermanent(f"insert of '{record.get('slug')}' returned no id")
        return str(rows[0]["id"])

    def replace(self, record_id: str, record: Dict[str, Any]) -> None:
        resp = self._request(
            "PATCH",
            params={"id": f"eq.{record_id}"},
            json=to_row(record),
            headers={"Prefer": "return=representation"},
        )
        if not (resp.json() or []):
            raise StoragePermanent(f"no broker row with id {record_id}")

    def close(self) -> None:
        if self.session:
            self.session.close()
