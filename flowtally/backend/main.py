"""
backend/main.py

Command-line entry point.

    flowtally summarize  RAW.csv …          raw files → *_summary.csv
    flowtally consolidate SUMMARY.csv …     summary files → latest snapshot
    flowtally ingest     RAW.csv …          summarize + consolidate in one go
    flowtally export     SRC DST            one pair → exports/<src>__<dst>.csv
    flowtally serve                         read-only HTTP API
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn

from .aggregation.models import PartialBatch
from .config import settings
from .consolidation import CycleResult, cycle_from_settings
from .errors import FlowtallyError, MissingConfiguration
from .export.exporter import export_filename, export_pair, render_export_csv
from .ingest.schema import flow_record_schema
from .ingest.summary_csv import decode_partial_batch, encode_partial_batch
from .metrics import METRICS
from .pipeline import read_units, summarize_units, summary_name, summary_names
from .storage.repository import SqliteSnapshotStore, open_store
from .storage.serializers import encode_snapshot_csv, encode_snapshot_json, state_to_document

logger = logging.getLogger("flowtally.main")


def _open_store(db_path: str) -> SqliteSnapshotStore:
    if not db_path:
        raise MissingConfiguration("no snapshot store configured — set DB_PATH or pass --db")
    return open_store(db_path)


def _summarize(paths: list[str]) -> list[PartialBatch]:
    summarized = summarize_units(
        read_units(paths),
        flow_record_schema(settings),
        max_workers=settings.EXTRACT_WORKERS,
        max_samples=settings.MAX_REJECTED_SAMPLES,
    )
    for unit in summarized:
        for sample in unit.rejected_samples[:3]:
            logger.warning("%s line %d rejected: %s", unit.batch.source, sample.line, sample.reason)
    return [u.batch for u in summarized]


def _report_cycle(result: CycleResult) -> None:
    print(
        f"tag={result.tag} version={result.version} keys={len(result.state)} "
        f"applied={len(result.applied)} duplicates={len(result.duplicates)} "
        f"attempts={result.attempts}"
    )


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------

def cmd_summarize(args: argparse.Namespace) -> int:
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    batches = _summarize(args.files)
    for batch, name in zip(batches, summary_names(batches)):
        target = out_dir / name
        if target.exists() and decode_partial_batch(target.read_bytes()).batch_id != batch.batch_id:
            target = out_dir / summary_name(batch.source, batch.batch_id)
            logger.warning("%s already holds another batch — writing %s", name, target.name)
        target.write_bytes(encode_partial_batch(batch))
        print(f"{target}  groups={len(batch)} rows={batch.rows_read} rejected={batch.rejected}")
    return 0


def cmd_consolidate(args: argparse.Namespace) -> int:
    batches = [
        decode_partial_batch(Path(p).read_bytes(), source=str(p)) for p in args.files
    ]
    return _consolidate(args, batches)


def cmd_ingest(args: argparse.Namespace) -> int:
    return _consolidate(args, _summarize(args.files))


def _consolidate(args: argparse.Namespace, batches: list[PartialBatch]) -> int:
    store = _open_store(args.db)
    try:
        result = cycle_from_settings(store, settings).run(batches, tag=args.tag)
    finally:
        store.close()
    _report_cycle(result)

    if args.csv_out:
        Path(args.csv_out).write_text(encode_snapshot_csv(result.state), encoding="utf-8")
    if args.json_out:
        doc = state_to_document(result.state, result.tag, result.version)
        Path(args.json_out).write_text(encode_snapshot_json(doc), encoding="utf-8")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    store = _open_store(args.db)
    try:
        state, version = store.load(args.tag)
    finally:
        store.close()

    result = export_pair(state, args.source, args.destination)
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / export_filename(args.source, args.destination)
    target.write_text(render_export_csv(result), encoding="utf-8")
    print(f"{target}  matched={len(result.entries)} (snapshot {args.tag} v{version})")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api.main import create_app, set_store

    store = _open_store(args.db)
    set_store(store)
    logger.info("Serving snapshots from %r on http://%s:%d", args.db, args.host, args.port)
    try:
        uvicorn.run(create_app(), host=args.host, port=args.port, log_level="warning")
    finally:
        store.close()
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="flowtally", description="Traffic flow consolidation")
    parser.add_argument("--db", default=settings.DB_PATH, help="snapshot database path")
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("summarize", help="reduce raw flow files to summary files")
    p.add_argument("files", nargs="+")
    p.add_argument("--out-dir", default=settings.SUMMARY_DIR)
    p.set_defaults(func=cmd_summarize)

    for name, func, help_text in (
        ("consolidate", cmd_consolidate, "merge summary files into the snapshot"),
        ("ingest", cmd_ingest, "summarize raw files and merge them in one cycle"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("files", nargs="+")
        p.add_argument("--tag", default=settings.SNAPSHOT_TAG)
        p.add_argument("--csv-out", default=None, help="also write the new snapshot as CSV")
        p.add_argument("--json-out", default=None, help="also write the new snapshot as JSON")
        p.set_defaults(func=func)

    p = sub.add_parser("export", help="export one (source, destination) pair")
    p.add_argument("source")
    p.add_argument("destination")
    p.add_argument("--tag", default=settings.SNAPSHOT_TAG)
    p.add_argument("--out-dir", default=settings.EXPORT_DIR)
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("serve", help="run the read-only HTTP API")
    p.add_argument("--host", default=settings.API_HOST)
    p.add_argument("--port", type=int, default=settings.API_PORT)
    p.set_defaults(func=cmd_serve)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> NoReturn:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        code = args.func(args)
    except FlowtallyError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        code = 1
    logger.debug("Final metrics: %s", METRICS.as_dict())
    sys.exit(code)


if __name__ == "__main__":
    main()
