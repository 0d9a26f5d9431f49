"""
Command-line entry point for running one saved-list import synchronously.
Useful for backfills and for inspecting how an archive would be imported.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from src.common.db import engine, test_connection
from src.common.logging import configure_logging
from src.importer.dispatcher import build_dispatcher
from src.importer.errors import ImportPipelineError
from src.importer.importer_config import load_import_config
from src.importer.jobs import Stage
from src.importer.models import SelectedList
from src.importer.pipeline import analyze_archive
from src.importer.writer import apply_import_ddl


def _selections(raw: str | None) -> list[SelectedList] | None:
    if not raw:
        return None
    names = [name.strip() for name in raw.split(",") if name.strip()]
    return [SelectedList(name=name) for name in names] or None


def run_import(
    archive_path: Path,
    *,
    owner_id: str,
    list_names: str | None = None,
    fast: bool = False,
) -> dict[str, Any]:
    # The CLI never deletes the archive it was pointed at.
    config = replace(load_import_config(), cleanup_archive=False)
    dispatcher = build_dispatcher(engine=engine, config=config)
    try:
        job_id = dispatcher.submit(owner_id, archive_path, _selections(list_names), geocoding_enabled=not fast)
        dispatcher.wait([job_id])
        return dispatcher.tracker.get(job_id).to_status()
    finally:
        dispatcher.shutdown()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import saved place lists from an exported archive")
    parser.add_argument("--archive", required=True, type=Path)
    parser.add_argument("--owner-id", default="cli")
    parser.add_argument("--lists", default=None, help="Comma-separated list names to import (default: all)")
    parser.add_argument("--fast", action="store_true", help="Skip geocoding and use placeholder coordinates")
    parser.add_argument("--analyze-only", action="store_true")
    parser.add_argument("--apply-ddl", action="store_true", help="Create import tables before running")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    configure_logging()

    if args.analyze_only:
        try:
            lists = analyze_archive(args.archive, load_import_config())
        except ImportPipelineError as exc:
            print(f"ERROR: {exc.message}", file=sys.stderr)
            print(json.dumps({"kind": exc.kind, "details": exc.details}, indent=2, default=str), file=sys.stderr)
            raise SystemExit(1) from None
        print(json.dumps({"lists": lists}, indent=2))
        return

    if not test_connection():
        print("ERROR: database is not reachable", file=sys.stderr)
        raise SystemExit(1)
    if args.apply_ddl:
        apply_import_ddl(engine)

    status = run_import(args.archive, owner_id=args.owner_id, list_names=args.lists, fast=args.fast)
    print(json.dumps(status, indent=2, default=str))
    if status["stage"] == Stage.ERROR.value:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
