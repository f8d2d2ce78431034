#!/usr/bin/env python3
"""Initialise the SQLite store and insert the demo purchase order (PO-001)."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from commission_flow.config import get_settings
from commission_flow.persistence import SqliteRepository, storage_counts
from commission_flow.repository import seed_demo_data


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed the commission flow database with demo data.")
    p.add_argument("--db", type=Path, default=None, help="SQLite file (defaults to COMMISSION_FLOW_DB_PATH)")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    db_path = args.db or get_settings().db_path
    repo = SqliteRepository(db_path)
    po = seed_demo_data(repo)
    print(json.dumps({"db": str(db_path), "seeded_po": po.id, "counts": storage_counts(db_path)}, indent=2))


if __name__ == "__main__":
    main()
