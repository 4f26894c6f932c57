from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Tuple

from .errors import SourceUnavailable
from .schema import SourceCategory

logger = logging.getLogger(__name__)

DEFAULT_MARKUP_EXTENSIONS: Tuple[str, ...] = (".html", ".htm")
DEFAULT_SCRIPT_EXTENSIONS: Tuple[str, ...] = (".js",)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SourceFile:
    path: str
    size: int
    category: SourceCategory
    discovered_at: str


@dataclass(frozen=True)
class SourceDocument:
    path: str
    size: int
    text: str
    discovered_at: str

    @property
    def name(self) -> str:
        return Path(self.path).name


def classify(
    path: str | Path,
    markup_extensions: Iterable[str] = DEFAULT_MARKUP_EXTENSIONS,
    script_extensions: Iterable[str] = DEFAULT_SCRIPT_EXTENSIONS,
) -> SourceCategory:
    ext = Path(path).suffix.lower()
    if ext in {e.lower() for e in markup_extensions}:
        return "markup"
    if ext in {e.lower() for e in script_extensions}:
        return "script"
    return "other"


def _check_root(root: Path) -> None:
    if not root.exists():
        raise SourceUnavailable(str(root), "does not exist")
    if not root.is_dir():
        raise SourceUnavailable(str(root), "not a directory")
    if not os.access(root, os.R_OK | os.X_OK):
        raise SourceUnavailable(str(root), "not readable")


def _walk(
    directory: Path,
    recursive: bool,
    markup_extensions: Tuple[str, ...],
    script_extensions: Tuple[str, ...],
    is_root: bool,
) -> Iterator[SourceFile]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        if is_root:
            raise SourceUnavailable(str(directory), str(e)) from e
        logger.warning("skipping unreadable directory %s: %s", directory, e)
        return

    subdirs: List[Path] = []
    for entry in entries:
        # symlinks are never followed, file or directory
        if entry.is_symlink():
            continue
        if entry.is_dir(follow_symlinks=False):
            if recursive:
                subdirs.append(Path(entry.path))
            continue
        if not entry.is_file(follow_symlinks=False):
            continue

        try:
            size = entry.stat(follow_symlinks=False).st_size
        except OSError as e:
            logger.warning("cannot stat %s: %s", entry.path, e)
            continue

        yield SourceFile(
            path=entry.path,
            size=size,
            category=classify(entry.name, markup_extensions, script_extensions),
            discovered_at=utc_now_iso(),
        )

    for sub in subdirs:
        yield from _walk(sub, recursive, markup_extensions, script_extensions, is_root=False)


def iter_source_files(
    root: str | Path,
    *,
    recursive: bool = False,
    markup_extensions: Iterable[str] = DEFAULT_MARKUP_EXTENSIONS,
    script_extensions: Iterable[str] = DEFAULT_SCRIPT_EXTENSIONS,
) -> Iterator[SourceFile]:
    """
    Yield every regular file under root, sorted by name per directory.

    The root is validated eagerly (SourceUnavailable is raised by this call,
    not on first iteration). Each call re-reads the directory.
    """
    root_path = Path(root)
    _check_root(root_path)
    return _walk(
        root_path,
        recursive,
        tuple(markup_extensions),
        tuple(script_extensions),
        is_root=True,
    )


def load_document(source: SourceFile) -> SourceDocument:
    raw = Path(source.path).read_bytes()
    return SourceDocument(
        path=source.path,
        size=len(raw),
        text=raw.decode("utf-8", errors="replace"),
        discovered_at=source.discovered_at,
    )


def iter_documents(root: str | Path, **scan_kwargs) -> Iterator[SourceDocument]:
    """Markup documents only, loaded one at a time."""
    files = iter_source_files(root, **scan_kwargs)
    return (load_document(f) for f in files if f.category == "markup")


def scan_summary(root: str | Path, **scan_kwargs) -> Dict[str, object]:
    counts: Dict[str, int] = {"markup": 0, "script": 0, "other": 0}
    total_bytes = 0
    samples: List[Dict[str, object]] = []

    for f in iter_source_files(root, **scan_kwargs):
        counts[f.category] += 1
        total_bytes += f.size
        if f.category == "markup" and len(samples) < 5:
            samples.append({"name": Path(f.path).name, "size": f.size})

    return {
        "root": str(root),
        "counts": counts,
        "total_files": sum(counts.values()),
        "total_bytes": total_bytes,
        "sample_markup": samples,
    }
