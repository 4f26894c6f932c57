# scripts/cli.py
from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from broker_import.core.config import ImportConfig
from broker_import.core.documents import scan_summary
from broker_import.core.errors import SourceUnavailable
from broker_import.core.logging_config import configure_logging
from broker_import.core.runner import run_import
from broker_import.sinks.base import BrokerStore

logger = logging.getLogger("broker_import.cli")

EXIT_OK = 0
EXIT_RECORD_FAILURES = 1
EXIT_SOURCE_UNAVAILABLE = 2


# ----------------------------
# Registry: map "store name" -> factory
# A new backend only needs one entry here.
# ----------------------------

@dataclass(frozen=True)
class StoreConfig:
    key: str
    factory: Callable[[argparse.Namespace], BrokerStore]


def _memory_store(args: argparse.Namespace) -> BrokerStore:
    from broker_import.sinks.memory_store import MemoryStore
    return MemoryStore()


def _sqlite_store(args: argparse.Namespace) -> BrokerStore:
    from broker_import.sinks.sqlite_store import SQLiteStore
    return SQLiteStore(args.db_path or str(Path("state") / "brokers.sqlite"))


def _rest_store(args: argparse.Namespace) -> BrokerStore:
    from broker_import.sinks.rest_store import RestStore

    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        raise SystemExit("rest store needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY in the environment")
    return RestStore(url, key)


STORE_REGISTRY: dict[str, StoreConfig] = {
    "memory": StoreConfig(key="memory", factory=_memory_store),
    "sqlite": StoreConfig(key="sqlite", factory=_sqlite_store),
    "rest": StoreConfig(key="rest", factory=_rest_store),
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="broker-import",
        description="Extract broker records from legacy review pages and import them into a store.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Extract + reconcile every markup document under ROOT.")
    imp.add_argument("root", help="Directory holding the legacy broker pages.")
    imp.add_argument("--store", choices=sorted(STORE_REGISTRY), default="sqlite",
                     help="Target store. rest reads SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY.")
    imp.add_argument("--db-path", default=None, help="SQLite path (default state/brokers.sqlite).")
    imp.add_argument("--workers", type=int, default=ImportConfig.max_workers, help="Worker threads.")
    imp.add_argument("--max-retries", type=int, default=ImportConfig.max_retries,
                     help="Retries per record on transient storage errors.")
    imp.add_argument("--recursive", action="store_true", help="Descend into subdirectories.")
    imp.add_argument("--dry-run", action="store_true",
                     help="Look records up but never write. Outcomes still show the decision.")
    imp.add_argument("--report", default=None, help="Write the run report JSON here.")
    imp.add_argument("--export", default=None, help="Write every normalized record as JSONL here.")

    scan = sub.add_parser("scan", help="Count files under ROOT by category; reads nothing but sizes.")
    scan.add_argument("root")
    scan.add_argument("--recursive", action="store_true")

    return p


def _install_stop_handler(stop: threading.Event) -> None:
    def _handler(signum, frame):
        logger.warning("signal %s received; finishing in-flight records", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def cmd_import(args: argparse.Namespace) -> int:
    config = ImportConfig(
        recursive=args.recursive,
        max_workers=args.workers,
        max_retries=args.max_retries,
        dry_run=args.dry_run,
    )

    stop = threading.Event()
    if threading.current_thread() is threading.main_thread():
        _install_stop_handler(stop)

    with STORE_REGISTRY[args.store].factory(args) as store:
        try:
            report = run_import(args.root, store, config, stop_event=stop, export_path=args.export)
        except SourceUnavailable as e:
            logger.error("%s", e)
            return EXIT_SOURCE_UNAVAILABLE

    if args.report:
        report.write_json(args.report)

    print(f"[import] root={args.root} store={args.store} dry_run={args.dry_run} workers={args.workers}")
    print(report.log_line())
    if args.report:
        print(f"report_path={args.report}")
    if args.export:
        print(f"export_path={args.export}")
    for issue in report.issues:
        print(f"  {issue['outcome']:<8} {issue['source_path']}  {issue['kind']}: {issue['reason']}")

    return EXIT_RECORD_FAILURES if report.has_failures else EXIT_OK


def cmd_scan(args: argparse.Namespace) -> int:
    try:
        summary = scan_summary(args.root, recursive=args.recursive)
    except SourceUnavailable as e:
        logger.error("%s", e)
        return EXIT_SOURCE_UNAVAILABLE

    c = summary["counts"]
    print(f"[scan] root={summary['root']}")
    print(f"markup={c['markup']} script={c['script']} other={c['other']} "
          f"total_files={summary['total_files']} total_bytes={summary['total_bytes']}")
    for s in summary["sample_markup"]:
        print(f"  {s['name']} ({s['size']} bytes)")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "import":
        return cmd_import(args)
    return cmd_scan(args)


if __name__ == "__main__":
    raise SystemExit(main())
