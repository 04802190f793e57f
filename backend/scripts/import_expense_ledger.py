#!/usr/bin/env python3
"""Import a CSV/Excel expense ledger into Firestore."""

from __future__ import annotations

import argparse
from pathlib import Path

from dotenv import load_dotenv


def main() -> int:
    backend_dir = Path(__file__).resolve().parents[1]
    load_dotenv(backend_dir / ".env")

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("ledger", type=Path, help="Path to a .csv, .xlsx or .xls ledger file")
    parser.add_argument("--dry-run", action="store_true", help="Parse and report without writing")
    args = parser.parse_args()

    # Settings are read at import time, so import after .env is loaded.
    from receipt_ledger.core.exceptions import InvalidInputError, PersistenceError
    from receipt_ledger.services.expense_import import parse_ledger_file
    from receipt_ledger.services.firestore_service import (
        FirestoreExpenseRepository,
        create_client,
    )

    if not args.ledger.is_file():
        raise SystemExit(f"Ledger file not found: {args.ledger}")

    try:
        entries = parse_ledger_file(args.ledger.read_bytes(), args.ledger.name)
    except InvalidInputError as e:
        raise SystemExit(f"Rejected {args.ledger.name}: {e}")

    total = sum(entry.amount for entry in entries)
    print(f"Parsed {len(entries)} rows from {args.ledger.name} (total {total})")
    if args.dry_run:
        for entry in entries:
            print(f"  {entry.date:%Y-%m-%d} {entry.category} {entry.amount} {entry.description}")
        return 0

    try:
        written = FirestoreExpenseRepository(create_client()).create_many(entries)
    except PersistenceError as e:
        raise SystemExit(str(e))
    print(f"Imported {written} expense entries successfully.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
