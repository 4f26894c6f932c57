from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional

from .errors import DuplicateKey, ValidationRejected

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: Optional[str]) -> str:
    """'FP Markets' -> 'fp-markets'. May return ''."""
    if not text:
        return ""
    s = _NON_ALNUM_RE.sub("-", text.lower())
    return s.strip("-")


def slug_from_filename(path: str | Path, strip_suffixes: Iterable[str] = ("-review",)) -> str:
    """
    'bdswiss-review.html' -> 'bdswiss'
    Suffixes are matched on the lowercased stem, longest first.
    """
    stem = Path(path).stem.lower()
    for suffix in sorted((s.lower() for s in strip_suffixes), key=len, reverse=True):
        if suffix and stem.endswith(suffix):
            stem = stem[: -len(suffix)]
            break
    return slugify(stem)


def resolve_slug(filename_slug: Optional[str], name: Optional[str], source_path: str) -> str:
    slug = filename_slug or slugify(name)
    if not slug:
        raise ValidationRejected(source_path)
    return slug


class KeyRegistry:
    """
    In-run slug claims. First registration wins; later claimants get DuplicateKey.
    Safe to call from several threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._claims: Dict[str, str] = {}

    def register(self, slug: str, source_path: str) -> None:
        with self._lock:
            first = self._claims.get(slug)
            if first is not None:
                raise DuplicateKey(slug, first, source_path)
            self._claims[slug] = source_path

    def owner(self, slug: str) -> Optional[str]:
        with self._lock:
            return self._claims.get(slug)

    def __len__(self) -> int:
        with self._lock:
            return len(self._claims)

    def __contains__(self, slug: object) -> bool:
        with self._lock:
            return slug in self._claims
