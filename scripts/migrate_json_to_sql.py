#!/usr/bin/env python3
"""
One-off migration: JSON documents -> SQL store.

IDs, timestamps, encrypted secrets and the work-order counter are preserved.
The copy runs in a single transaction, so a failure leaves the SQL store as
it was.

Usage:
  python scripts/migrate_json_to_sql.py [--data-dir DIR] [--database-url URL]
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from carwash.core.config import get_settings
from carwash.core.logging_config import setup_logging
from carwash.core.utils import utcnow
from carwash.domain.records import ALL_RECORDS, User
from carwash.repositories import JsonFileStorage, SQLStorage, StorageError


def _ordered(storage: JsonFileStorage, record_cls):
    records = storage.export_records(record_cls)
    if record_cls is User:
        # creators before the users they created
        records.sort(key=lambda u: u.created_at or utcnow())
        for user in records:
            user.usage_reset_date = user.usage_reset_date or user.created_at or utcnow()
    return records


def migrate(data_dir: Path, database_url: str) -> dict[str, int]:
    source = JsonFileStorage(data_dir)
    target = SQLStorage(database_url)
    target.initialize()
    counts: dict[str, int] = {}
    batch = []
    for record_cls in ALL_RECORDS:
        records = _ordered(source, record_cls)
        counts[record_cls.collection] = len(records)
        batch.extend(records)
    target.import_records(batch, next_work_order_number=source.get_next_work_order_number())
    target.close()
    return counts


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    ap = argparse.ArgumentParser(description="Copy JSON documents into the SQL store")
    ap.add_argument("--data-dir", default=str(settings.data_dir), help="JSON documents directory")
    ap.add_argument("--database-url", default=settings.database_url, help="target SQLAlchemy URL")
    args = ap.parse_args(argv)
    setup_logging(settings.log_level)

    data_dir = Path(args.data_dir)
    if not data_dir.is_dir():
        raise SystemExit(f"Data directory not found: {data_dir}")
    try:
        counts = migrate(data_dir, args.database_url)
    except StorageError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        return 1
    for collection, count in counts.items():
        print(f"  {collection}: {count}")
    print("JSON data migrated to SQL successfully.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
