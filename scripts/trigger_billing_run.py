#!/usr/bin/env python3
"""Trigger the daily billing run on a live backend, meant to be called from cron."""

from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.parse
import urllib.request
from datetime import date

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
BASE_URL_DEFAULT = "http://localhost:8000/rest/v1"
TIMEOUT_SECONDS_DEFAULT = 600


def post_json(url: str, *, timeout: int) -> dict:
    """POST an empty body to a URL and return parsed response."""
    req = urllib.request.Request(url, data=b"", headers={"Accept": "application/json"}, method="POST")
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        return json.loads(resp.read().decode("utf-8"))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trigger the scheduled billing run over HTTP.")
    parser.add_argument("--base-url", default=BASE_URL_DEFAULT, help="Billing backend API base URL")
    parser.add_argument("--date", dest="run_date", type=date.fromisoformat, default=None, help="Run date (YYYY-MM-DD)")
    parser.add_argument("--timeout", type=int, default=TIMEOUT_SECONDS_DEFAULT)
    return parser.parse_args()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main() -> int:
    args = parse_args()
    url = f"{args.base_url.rstrip('/')}/admin/auto-billing"
    if args.run_date is not None:
        url = f"{url}?{urllib.parse.urlencode({'run_date': args.run_date.isoformat()})}"

    try:
        report = post_json(url, timeout=args.timeout)
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8") if e.fp else "unknown"
        print(f"ERROR: billing run rejected: {e.code} {error_body}", file=sys.stderr)
        return 1
    except urllib.error.URLError as e:
        print(f"ERROR: billing backend unreachable: {e.reason}", file=sys.stderr)
        return 1

    print("=" * 60)
    print(f"Billing run {report['run_date']}")
    print("=" * 60)
    if report["billed_pending"]:
        print("  Monthly pending invoices billed")
    for batch in report["batches"]:
        print(f"  {batch['status']:30s} fetched={batch['fetched_count']:<5d} {batch['status_counts']}")
        for error in batch["errors"]:
            print(f"    WARN: {error}")
    for sweep in report["sweeps"]:
        print(f"  {sweep['status']:30s} marked permanent fail: {sweep['marked_count']}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
