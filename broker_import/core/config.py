from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple


@dataclass(frozen=True)
class ImportConfig:
    """
    Knobs for one import run.
    CLI builds this from argparse; tests use the defaults + with_overrides().
    """

    # scanner
    recursive: bool = False
    markup_extensions: Tuple[str, ...] = (".html", ".htm")
    script_extensions: Tuple[str, ...] = (".js",)

    # key resolver
    strip_suffixes: Tuple[str, ...] = ("-review",)

    # concurrency
    max_workers: int = 4

    # reconciler
    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    dry_run: bool = False

    # normalizer
    description_max_length: int = 2000

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.description_max_length < 1:
            raise ValueError("description_max_length must be >= 1")

    @property
    def in_flight_limit(self) -> int:
        return self.max_workers * 2

    def with_overrides(self, **kwargs) -> "ImportConfig":
        return replace(self, **kwargs)
