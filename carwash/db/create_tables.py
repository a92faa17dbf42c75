"""Create the POS tables (and the counters table) for a database URL."""
from __future__ import annotations

import sys

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from . import models  # noqa: F401  # registers every table on Base.metadata
from .session import Base, get_engine


def create_all(database_url: str | None = None) -> list[str]:
    """Create missing tables; existing tables and rows are left alone."""
    engine = get_engine(database_url)
    Base.metadata.create_all(bind=engine)
    names = sorted(Base.metadata.tables)
    logger.debug("SQL schema checked ({} tables)", len(names))
    return names


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    try:
        names = create_all(args[0] if args else None)
    except SQLAlchemyError as exc:
        logger.error("Creating tables failed: {}", exc)
        return 1
    print(f"Tables ready: {', '.join(names)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
