#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

# Ensure project root is on sys.path when running from ./scripts
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

import httpx

from src.api.settings import load_settings

TICK_PATH = "/api/scheduler/tick"


def run_tick(tick_url: str, *, timeout_seconds: float) -> Optional[Dict[str, Any]]:
    """
    Ask the API server for one dispatcher pass.

    The server process is the only writer of the reminder store; this loop
    only supplies the cadence.
    """
    try:
        response = httpx.post(tick_url, timeout=timeout_seconds)
    except httpx.HTTPError as exc:
        print(f"[error] tick_failed url={tick_url} error={exc.__class__.__name__}: {exc}")
        return None
    if response.status_code >= 400:
        print(f"[error] tick_failed url={tick_url} status={response.status_code}")
        return None
    return response.json()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Trigger the reminder dispatcher on a fixed polling interval.")
    parser.add_argument("--poll-seconds", type=float, default=60.0)
    parser.add_argument("--max-ticks", type=int, default=0, help="0 means no fixed limit.")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit.")
    parser.add_argument(
        "--tick-url",
        type=str,
        default=None,
        help=f"Defaults to APP_BASE_URL (or localhost:PORT) + {TICK_PATH}.",
    )
    parser.add_argument("--timeout-seconds", type=float, default=30.0)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    tick_url = args.tick_url or load_settings().webhook_url(TICK_PATH)

    ticks = 0
    while True:
        summary = run_tick(tick_url, timeout_seconds=args.timeout_seconds)
        if summary is not None:
            print(
                f"[tick] processed={summary.get('processed', 0)} called={summary.get('successfully_called', 0)} "
                f"retrying={summary.get('scheduled_for_retry', 0)} escalated={summary.get('escalated_to_backup', 0)} "
                f"done={summary.get('marked_as_done', 0)} skipped={summary.get('skipped', 0)} "
                f"errors={summary.get('errors', 0)}"
            )

        ticks += 1
        if args.once:
            break
        if args.max_ticks > 0 and ticks >= args.max_ticks:
            break
        time.sleep(max(0.1, args.poll_seconds))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
