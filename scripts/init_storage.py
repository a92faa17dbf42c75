#!/usr/bin/env python3
"""
Initialize the configured store and make sure the default admin exists.

Usage:
  python scripts/init_storage.py [--backend json|sql] [--data-dir DIR] [--database-url URL]
"""
from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from carwash.core.config import STORAGE_BACKENDS, get_settings
from carwash.core.logging_config import setup_logging
from carwash.repositories import StorageError, create_storage
from carwash.services.bootstrap import ensure_default_admin


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Initialize car-wash POS storage")
    ap.add_argument("--backend", choices=STORAGE_BACKENDS, help="override STORAGE_BACKEND")
    ap.add_argument("--data-dir", help="JSON documents directory (json backend)")
    ap.add_argument("--database-url", help="SQLAlchemy URL (sql backend)")
    args = ap.parse_args(argv)

    settings = get_settings()
    overrides = {}
    if args.backend:
        overrides["storage_backend"] = args.backend
    if args.data_dir:
        overrides["data_dir"] = Path(args.data_dir)
    if args.database_url:
        overrides["database_url"] = args.database_url
    settings = replace(settings, **overrides)
    setup_logging(settings.log_level)

    try:
        storage = create_storage(settings)
        result = ensure_default_admin(storage, settings)
    except StorageError as exc:
        print(f"Initialization failed: {exc}", file=sys.stderr)
        return 1
    storage.close()

    print(f"OK: {settings.storage_backend} storage initialized")
    if result.created:
        print("  Admin user created (username: admin)")
    elif result.reconciled:
        print("  Admin password reset to ADMIN_PASSWORD")
    else:
        print("  Admin user already present")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
