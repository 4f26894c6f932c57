from __future__ import annotations

from typing import Optional


class BrokerImportError(Exception):
    """Base for every error raised by the import pipeline."""


class SourceUnavailable(BrokerImportError):
    """Root directory missing or unreadable. Fatal for the whole run."""

    def __init__(self, root: str, reason: str):
        self.root = root
        self.reason = reason
        super().__init__(f"source root unavailable: {root} ({reason})")


class ExtractionQuality(BrokerImportError):
    """
    Soft warning: one or more fields were not matched by any strategy.
    Never raised by the runner, only recorded in the report.
    """

    def __init__(self, source_path: str, fields: tuple[str, ...]):
        self.source_path = source_path
        self.fields = fields
        super().__init__(f"unresolved fields: {', '.join(fields)}")


class ValidationRejected(BrokerImportError):
    """Neither a name nor a slug could be established for a document."""

    def __init__(self, source_path: str, reason: str = "no name and no slug"):
        self.source_path = source_path
        self.reason = reason
        super().__init__(f"{source_path}: {reason}")


class DuplicateKey(BrokerImportError):
    def __init__(self, slug: str, first_path: str, second_path: str):
        self.slug = slug
        self.first_path = first_path
        self.second_path = second_path
        super().__init__(f"slug '{slug}' already claimed by {first_path}; skipping {second_path}")


# ---------------------------
# Storage taxonomy
# ---------------------------

class StorageError(BrokerImportError):
    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class StorageTransient(StorageError):
    """Timeout, connection reset, lock contention. Worth retrying."""


class StorageConflict(StorageTransient):
    """Insert hit an existing key (another writer got there first)."""


class StoragePermanent(StorageError):
    """Bad request, constraint or schema problem. Retrying will not help."""
