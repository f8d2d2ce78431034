#!/usr/bin/env python3
"""Run the demo seller patty price settlement and print the outcome JSON.

Safe to repeat against the same ``--db`` file: stored sale orders and the
fallback entry are reused, and an already settled PO is reported as it is.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from commission_flow.demo import run_demo_settlement
from commission_flow.persistence import SqliteRepository
from commission_flow.repository import InMemoryRepository


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the demo seller patty price settlement.")
    p.add_argument("--db", type=Path, default=None, help="SQLite file to use instead of an in-memory store")
    p.add_argument("--skip-fallback", action="store_true", help="Leave SKU-001 uncovered to show a conflict")
    p.add_argument("--output", type=Path, default=None, help="Optional path to write JSON output")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    repo = SqliteRepository(args.db) if args.db else InMemoryRepository()
    result = run_demo_settlement(repo, skip_fallback=args.skip_fallback)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(json.dumps(result, indent=2), encoding="utf-8")
    else:
        print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
