# tests/conftest.py
"""
Pytest fixtures for the broker import tests.

Provides:
- Synthetic page corpora written into tmp_path
- Sample broker pages (BDSwiss end-to-end page and friends)
- Store doubles: in-memory store, flaky store, racing store

Usage:
    def test_something(make_corpus, bdswiss_html, memory_store):
        root = make_corpus({"bdswiss-review.html": bdswiss_html})
        report = run_import(root, memory_store)
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from broker_import.core.errors import StorageConflict, StoragePermanent, StorageTransient
from broker_import.sinks.memory_store import MemoryStore


# =============================================================================
# SAMPLE PAGES
# =============================================================================

BDSWISS_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>BDSwiss - DailyForex.com</title>
</head>
<body>
  <h1>BDSwiss Forex Broker Review</h1>
  <p>BDSwiss is regulated by FCA in the United Kingdom.</p>
  <p>The group is also regulated by CySEC.</p>
  <p>The minimum deposit: $100 for the classic account.</p>
</body>
</html>
"""

XM_HTML = """<html>
<head>
  <title>XM Review | Forex Brokers</title>
  <meta name="description" content="XM is a global forex and CFD broker offering MT4 and MT5 to retail traders.">
</head>
<body>
  <h1>XM Group</h1>
  <div class="score"><span itemprop="ratingValue">4.5</span></div>
  <p>Founded in 2009, XM is licensed by ASIC and authorised by the FCA.</p>
  <p>Trade on MT4, MT5 or the XM WebTrader.</p>
  <p>Minimum deposit: USD 5</p>
</body>
</html>
"""

NAMELESS_HTML = """<html><body>
<p>Nothing here tells you which broker this page was about.</p>
</body></html>
"""


def page(
    title: Optional[str] = None,
    h1: Optional[str] = None,
    body: str = "",
    head: str = "",
) -> str:
    """Small HTML page builder for one-off cases."""
    t = f"<title>{title}</title>" if title is not None else ""
    h = f"<h1>{h1}</h1>" if h1 is not None else ""
    return f"<html><head>{t}{head}</head><body>{h}{body}</body></html>"


# =============================================================================
# CORPUS FIXTURES
# =============================================================================

@pytest.fixture
def bdswiss_html() -> str:
    return BDSWISS_HTML


@pytest.fixture
def xm_html() -> str:
    return XM_HTML


@pytest.fixture
def nameless_html() -> str:
    return NAMELESS_HTML


@pytest.fixture
def page_builder() -> Callable[..., str]:
    return page


@pytest.fixture
def make_corpus(tmp_path: Path) -> Callable[[Dict[str, Any]], Path]:
    """
    Write {relative_name: str | bytes} into a fresh directory and return it.
    Nested names ("sub/a.html") create subdirectories.
    """
    counter = {"n": 0}

    def _make(files: Dict[str, Any]) -> Path:
        counter["n"] += 1
        root = tmp_path / f"corpus{counter['n']}"
        root.mkdir()
        for name, content in files.items():
            p = root / name
            p.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                p.write_bytes(content)
            else:
                p.write_text(content, encoding="utf-8")
        return root

    return _make


# =============================================================================
# STORE DOUBLES
# =============================================================================

class FlakyStore(MemoryStore):
    """MemoryStore whose lookups fail a fixed number of times first."""

    def __init__(self, failures: int, error: Exception):
        super().__init__()
        self.failures = failures
        self.error = error
        self.calls = 0

    def find_by_key(self, slug: str) -> Optional[Dict[str, Any]]:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return super().find_by_key(slug)


class RacingStore(MemoryStore):
    """Another writer inserts the same slug right before our first insert."""

    def __init__(self, competitor: Dict[str, Any]):
        super().__init__()
        self.competitor = competitor
        self.raced = False

    def insert(self, record: Dict[str, Any]) -> str:
        if not self.raced:
            self.raced = True
            super().insert(self.competitor)
            raise StorageConflict(f"duplicate key value violates unique constraint: {record['slug']}")
        return super().insert(record)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def flaky_store() -> Callable[..., FlakyStore]:
    def _make(failures: int, error: Optional[Exception] = None) -> FlakyStore:
        return FlakyStore(failures, error or StorageTransient("connection reset by peer"))
    return _make


@pytest.fixture
def permanent_error() -> StoragePermanent:
    return StoragePermanent("column \"foo\" does not exist")


@pytest.fixture
def racing_store() -> Callable[[Dict[str, Any]], RacingStore]:
    return RacingStore


@pytest.fixture
def sleeps() -> List[float]:
    """Collects backoff delays instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps: List[float]) -> Callable[[float], None]:
    return sleeps.append
