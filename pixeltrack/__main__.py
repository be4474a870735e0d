"""
pixeltrack.__main__ — Entry point for ``python -m pixeltrack``
==============================================================

Maintenance commands that run outside the API:

* ``import <file.json> [--dry-run] [--recalc]`` — load a legacy document
  export into the tables.
* ``recalc [MEMBER_ID ...]`` — recompute cached totals (all members when no
  ID is given).

Run with::

    uv run python -m pixeltrack import export.json --recalc
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from pixeltrack.database.engine import create_db_engine, init_db
from pixeltrack.services import pixel_service
from pixeltrack.services.import_service import InvalidExportError, import_documents

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("pixeltrack")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pixeltrack")
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Load a legacy JSON document export")
    imp.add_argument("path", type=Path)
    imp.add_argument("--dry-run", action="store_true", help="Parse and count, write nothing")
    imp.add_argument("--recalc", action="store_true", help="Recalculate every member afterwards")

    rec = sub.add_parser("recalc", help="Recompute cached pixel totals")
    rec.add_argument("member_ids", nargs="*", metavar="MEMBER_ID")
    return parser


def _report(report) -> int:
    summary = report.to_dict()
    logger.info(
        "Recalculated %d, skipped %d, failed %d",
        len(summary["recalculated"]), len(summary["skipped"]), len(summary["failed"]),
    )
    return 1 if report.failed else 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    load_dotenv()
    engine = create_db_engine()
    init_db(engine)

    if args.command == "import":
        try:
            payload = json.loads(args.path.read_text(encoding="utf-8"))
            counts = import_documents(engine, payload, dry_run=args.dry_run)
        except (OSError, json.JSONDecodeError, InvalidExportError) as exc:
            logger.critical("Import failed: %s", exc)
            return 1
        print(json.dumps(counts, indent=2))
        if args.recalc and not args.dry_run:
            return _report(asyncio.run(pixel_service.recalculate_all(engine)))
        return 0

    if args.member_ids:
        report = asyncio.run(pixel_service.recalculate_members(engine, args.member_ids))
    else:
        report = asyncio.run(pixel_service.recalculate_all(engine))
    return _report(report)


if __name__ == "__main__":
    sys.exit(main())
