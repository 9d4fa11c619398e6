#!/usr/bin/env python3
"""Report duplicate library entries from an export file or the database."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import DB_CONNECT_TIMEOUT_SECONDS, DB_DSN
from db import utils as db_utils
from db.store import LibraryStore, ensure_schema
from helpers import records_from_dataframe
from library.duplicates import scan_duplicate_groups
from library.errors import ResolutionError
from library.models import DuplicateGroup, LibraryEntry, entries_from_rows

logger = logging.getLogger("scan_duplicates")

REPORT_COLUMNS = [
    "group",
    "key",
    "match_type",
    "confidence",
    "entry_id",
    "title",
    "platform",
    "playtime_hours",
    "achievements_earned",
    "completion_percentage",
]


def load_entries_from_file(path: Path) -> list[LibraryEntry]:
    """Read library entries from a CSV or Excel export."""

    suffix = path.suffix.lower()
    if suffix in {".xlsx", ".xls"}:
        df = pd.read_excel(path)
    elif suffix == ".csv":
        df = pd.read_csv(path)
    else:
        raise ValueError(f"Unsupported file type: {path.suffix}")
    return entries_from_rows(records_from_dataframe(df))


def load_entries_from_db(user_id: str, dsn: str = DB_DSN) -> tuple[list[LibraryEntry], set[str]]:
    engine = db_utils.build_engine_from_dsn(dsn, timeout=DB_CONNECT_TIMEOUT_SECONDS)
    try:
        ensure_schema(engine)
        store = LibraryStore(engine, user_id)
        return store.library_snapshot(), store.dismissed_keys()
    finally:
        engine.dispose()


def groups_to_dataframe(groups: Sequence[DuplicateGroup]) -> pd.DataFrame:
    rows = [
        {
            "group": index + 1,
            "key": group.key,
            "match_type": group.match_type.value,
            "confidence": group.confidence,
            "entry_id": member.id,
            "title": member.title,
            "platform": member.platform,
            "playtime_hours": member.playtime_hours,
            "achievements_earned": member.achievements_earned,
            "completion_percentage": member.completion_percentage,
        }
        for index, group in enumerate(groups)
        for member in group.members
    ]
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def write_report(df: pd.DataFrame, path: Path) -> None:
    if path.suffix.lower() == ".xlsx":
        df.to_excel(path, index=False)
    else:
        df.to_csv(path, index=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", type=Path, help="CSV or XLSX library export")
    source.add_argument("--user", help="scan the stored library of this user id")
    parser.add_argument("--dsn", default=DB_DSN, help="database DSN (default: %(default)s)")
    parser.add_argument("--output", type=Path, help="write the report to CSV or XLSX")
    parser.add_argument("--verbose", action="store_true", help="log fuzzy match details")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    dismissed: set[str] = set()
    try:
        if args.input is not None:
            entries = load_entries_from_file(args.input)
        else:
            entries, dismissed = load_entries_from_db(args.user, args.dsn)
    except (OSError, ValueError, ResolutionError) as exc:
        print(f"Failed to load library: {exc}")
        return 1

    groups = scan_duplicate_groups(entries, dismissed_keys=dismissed, log=logger)
    report = groups_to_dataframe(groups)

    if not groups:
        print(f"No duplicates found among {len(entries)} entries.")
    else:
        for index, group in enumerate(groups, start=1):
            print(
                f"{index}. {group.title} [{group.match_type.value}, "
                f"{group.confidence}%]: "
                + ", ".join(f"{member.platform or '?'} ({member.id})" for member in group.members)
            )
        duplicates = sum(len(group.members) for group in groups)
        print(f"Found {len(groups)} groups covering {duplicates} of {len(entries)} entries.")

    if args.output is not None:
        write_report(report, args.output)
        print(f"Report written to {args.output}")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution path
    raise SystemExit(main())
