from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from .schema import OUTCOMES, BrokerRecord, ImportOutcome


@dataclass
class RunReport:
    run_id: str
    started_at: str
    finished_at: Optional[str] = None
    stopped: bool = False
    counts: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in OUTCOMES})
    issues: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    # summary inputs
    _page_types: Counter = field(default_factory=Counter, repr=False)
    _regulators: Counter = field(default_factory=Counter, repr=False)
    _deposits: List[float] = field(default_factory=list, repr=False)
    _rated: int = field(default=0, repr=False)

    # ---------------------------
    # Recording
    # ---------------------------
    def add_outcome(self, outcome: ImportOutcome) -> None:
        self.counts[outcome.outcome] = self.counts.get(outcome.outcome, 0) + 1
        if outcome.outcome in ("failed", "rejected", "skipped"):
            self.issues.append(
                {
                    "source_path": outcome.source_path,
                    "slug": outcome.slug,
                    "outcome": outcome.outcome,
                    "kind": outcome.kind,
                    "reason": outcome.reason,
                    "related_path": outcome.related_path,
                }
            )

    def add_warning(self, source_path: str, kind: str, detail: str) -> None:
        self.warnings.append({"source_path": source_path, "kind": kind, "detail": detail})

    def observe_record(self, record: BrokerRecord) -> None:
        """Feed a normalized record into the corpus summary."""
        self._page_types[record.page_type] += 1
        for reg in record.regulations:
            self._regulators[reg] += 1
        if record.min_deposit is not None and record.min_deposit > 0:
            self._deposits.append(record.min_deposit)
        if record.rating > 0:
            self._rated += 1

    # ---------------------------
    # Output
    # ---------------------------
    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def has_failures(self) -> bool:
        return self.counts.get("failed", 0) > 0

    def summary(self) -> Dict[str, Any]:
        avg = round(sum(self._deposits) / len(self._deposits), 2) if self._deposits else None
        return {
            "page_types": dict(sorted(self._page_types.items())),
            "regulators": dict(self._regulators.most_common()),
            "average_min_deposit": avg,
            "with_rating": self._rated,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "stopped": self.stopped,
            "total": self.total,
            "counts": dict(self.counts),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "summary": self.summary(),
        }

    def write_json(self, path: str | Path) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(orjson.dumps(self.to_dict(), option=orjson.OPT_INDENT_2))

    def log_line(self) -> str:
        c = self.counts
        return " ".join(f"{k}={c.get(k, 0)}" for k in OUTCOMES)
