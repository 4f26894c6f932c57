from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple

from broker_import.sinks.base import BrokerStore
from .config import ImportConfig
from .documents import SourceFile, iter_source_files, load_document, utc_now_iso
from .errors import DuplicateKey, ExtractionQuality, ValidationRejected
from .extractor import extract_document
from .jsonl import write_jsonl
from .keys import KeyRegistry, slug_from_filename
from .normalizer import normalize_record
from .reconciler import Reconciler, build_payload
from .report import RunReport
from .schema import BrokerRecord, ImportOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedRecord:
    source_path: str
    record: BrokerRecord
    unresolved: Tuple[str, ...]
    warnings: Tuple[str, ...]


def prepare_document(source: SourceFile, config: ImportConfig, extracted_at: str) -> PreparedRecord:
    """load -> extract -> normalize. Pure per document; safe on any worker thread."""
    doc = load_document(source)
    extraction = extract_document(doc.text)
    result = normalize_record(
        extraction,
        slug=slug_from_filename(doc.path, config.strip_suffixes),
        source_path=doc.path,
        extracted_at=extracted_at,
        description_max_length=config.description_max_length,
    )
    return PreparedRecord(
        source_path=doc.path,
        record=result.record,
        unresolved=extraction.unresolved,
        warnings=result.warnings,
    )


def _safe_reconcile(reconciler: Reconciler, record: BrokerRecord) -> ImportOutcome:
    try:
        return reconciler.reconcile(record)
    except Exception as e:
        logger.exception("unexpected error reconciling %s", record.source_path)
        return ImportOutcome(
            slug=record.slug,
            source_path=record.source_path or "",
            outcome="failed",
            kind=type(e).__name__,
            reason=str(e),
        )


def _failure(source_path: str, e: Exception, slug: Optional[str] = None) -> ImportOutcome:
    if isinstance(e, ValidationRejected):
        return ImportOutcome(slug=slug, source_path=source_path, outcome="rejected",
                             kind="ValidationRejected", reason=e.reason)
    return ImportOutcome(slug=slug, source_path=source_path, outcome="failed",
                         kind=type(e).__name__, reason=str(e))


def run_import(
    root: str | Path,
    store: BrokerStore,
    config: Optional[ImportConfig] = None,
    *,
    stop_event: Optional[threading.Event] = None,
    export_path: Optional[str | Path] = None,
    now: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """
    Scan root, then extract / normalize / reconcile every markup document.

    Only SourceUnavailable escapes; every per-record problem ends up in the report.
    Documents are prepared on a bounded thread pool but consumed in scan order,
    so the first document (by name) to claim a slug always wins it.
    """
    config = config or ImportConfig()
    started_at = now or utc_now_iso()
    report = RunReport(run_id=started_at, started_at=started_at)

    # raises SourceUnavailable before any work starts
    files = iter_source_files(
        root,
        recursive=config.recursive,
        markup_extensions=config.markup_extensions,
        script_extensions=config.script_extensions,
    )
    markup: Iterator[SourceFile] = (f for f in files if f.category == "markup")

    registry = KeyRegistry()
    reconciler = Reconciler(
        store,
        max_retries=config.max_retries,
        backoff_base=config.backoff_base,
        backoff_max=config.backoff_max,
        sleep=sleep,
        dry_run=config.dry_run,
    )
    limit = config.in_flight_limit
    exported: List[Dict[str, Any]] = []

    def stop_requested() -> bool:
        return stop_event is not None and stop_event.is_set()

    logger.info("import start root=%s workers=%d dry_run=%s", root, config.max_workers, config.dry_run)

    with ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="broker-import") as pool:
        preparing: Deque[Tuple[SourceFile, Future]] = deque()
        reconciling: Deque[Future] = deque()
        exhausted = False

        def submit_next() -> bool:
            nonlocal exhausted
            if exhausted:
                return False
            if stop_requested():
                if not report.stopped:
                    logger.info("stop requested; no further documents will be started")
                report.stopped = True
                return False
            try:
                sf = next(markup)
            except StopIteration:
                exhausted = True
                return False
            preparing.append((sf, pool.submit(prepare_document, sf, config, started_at)))
            return True

        def collect_one() -> None:
            outcome = reconciling.popleft().result()
            if outcome.outcome == "failed":
                logger.warning("failed %s: %s", outcome.source_path, outcome.reason)
            report.add_outcome(outcome)

        while len(preparing) < limit and submit_next():
            pass

        # ---------------------------
        # Coordinator: scan order, single writer of the key registry
        # ---------------------------
        while preparing:
            sf, fut = preparing.popleft()
            try:
                prepared = fut.result()
            except Exception as e:
                outcome = _failure(sf.path, e)
                logger.warning("%s %s: %s", outcome.outcome, sf.path, outcome.reason)
                report.add_outcome(outcome)
                submit_next()
                continue

            record = prepared.record
            if prepared.unresolved:
                report.add_warning(
                    sf.path, "ExtractionQuality", str(ExtractionQuality(sf.path, prepared.unresolved))
                )
            for w in prepared.warnings:
                kind, _, detail = w.partition(": ")
                report.add_warning(sf.path, kind, detail)

            try:
                registry.register(record.slug, sf.path)
            except DuplicateKey as e:
                logger.warning("skipped duplicate %s", e)
                report.add_outcome(
                    ImportOutcome(
                        slug=record.slug,
                        source_path=sf.path,
                        outcome="skipped",
                        kind="DuplicateKey",
                        reason=str(e),
                        related_path=e.first_path,
                    )
                )
                submit_next()
                continue

            report.observe_record(record)
            if export_path is not None:
                exported.append(build_payload(record))

            reconciling.append(pool.submit(_safe_reconcile, reconciler, record))
            while len(reconciling) > limit:
                collect_one()

            submit_next()

        while reconciling:
            collect_one()

    if export_path is not None:
        n = write_jsonl(Path(export_path), exported)
        logger.info("exported %d records to %s", n, export_path)

    report.finished_at = utc_now_iso()
    logger.info("import done %s stopped=%s", report.log_line(), report.stopped)
    return report
