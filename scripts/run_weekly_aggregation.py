#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT_DIR / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from screentime.core.errors import InputError, UpstreamUnavailable  # noqa: E402
from screentime.db.store import SqlUsageStore  # noqa: E402
from screentime.services.triggers import run_manual_aggregation  # noqa: E402
from screentime.services.week_window import week_window_for  # noqa: E402


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Aggregate daily usage into weekly summaries for every known user."
    )
    parser.add_argument(
        "--week-start",
        type=date.fromisoformat,
        default=None,
        help="Monday (YYYY-MM-DD) to backfill; defaults to the last completed week",
    )
    parser.add_argument(
        "--json-out",
        default="",
        help="Optional path to write the run summary json",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero when any user failed",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        window = week_window_for(args.week_start) if args.week_start else None
    except InputError as exc:
        print(f"[WEEKLY-AGG] {exc}", file=sys.stderr)
        return 2

    try:
        run = asyncio.run(run_manual_aggregation(SqlUsageStore(), window=window))
    except UpstreamUnavailable as exc:
        print(f"[WEEKLY-AGG] FAIL record store unavailable: {exc}", file=sys.stderr)
        return 1

    print(
        "[WEEKLY-AGG] "
        f"week_start={run.week_start.isoformat()} "
        f"week_end={run.week_end.isoformat()} "
        f"users={run.user_count} "
        f"written={run.written} "
        f"skipped={run.skipped} "
        f"stale={run.stale} "
        f"failed={len(run.failed_user_ids)}"
    )
    for user_id in run.failed_user_ids:
        print(f"  - failed user_id={user_id} reason={run.failures.get(user_id, 'unknown')}")

    if args.json_out:
        out_path = Path(args.json_out).resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(
            json.dumps(run.to_dict(), default=str, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        print(f"[WEEKLY-AGG] summary written: {out_path}")

    if args.strict and run.failed_user_ids:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
