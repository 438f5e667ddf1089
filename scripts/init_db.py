#!/usr/bin/env python3
"""
Create the PropEdge tables and report what the database holds.

    python scripts/init_db.py            # create missing tables
    python scripts/init_db.py --check    # connectivity + row counts only
    python scripts/init_db.py --reset --yes
"""

import argparse
import logging
import sys

from sqlalchemy import func, inspect, select, text
from sqlalchemy.exc import SQLAlchemyError

from propedge.models import Base, SessionLocal, engine, init_db

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger("init_db")


def database_ready() -> bool:
    with SessionLocal() as db:
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Cannot reach %s: %s", engine.url.render_as_string(hide_password=True), e)
            return False
    logger.info("Connected to %s", engine.url.render_as_string(hide_password=True))
    return True


def table_report() -> dict:
    """Row count per PropEdge table; None for tables not created yet."""
    existing = set(inspect(engine).get_table_names())
    counts = {}
    with SessionLocal() as db:
        for name, table in Base.metadata.tables.items():
            if name not in existing:
                counts[name] = None
                continue
            counts[name] = db.execute(select(func.count()).select_from(table)).scalar_one()
    return counts


def reset_tables(confirmed: bool) -> bool:
    if not confirmed:
        logger.error("--reset drops every PropEdge table; pass --yes to confirm")
        return False
    Base.metadata.drop_all(bind=engine)
    logger.warning("Dropped %d tables", len(Base.metadata.tables))
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Initialize the PropEdge database")
    parser.add_argument("--check", action="store_true", help="Only check connectivity and row counts")
    parser.add_argument("--reset", action="store_true", help="Drop all tables before creating them")
    parser.add_argument("--yes", action="store_true", help="Confirm --reset")
    args = parser.parse_args(argv)

    if not database_ready():
        return 1
    if not args.check:
        if args.reset and not reset_tables(args.yes):
            return 2
        init_db()

    for name, count in table_report().items():
        logger.info("  %-22s %s", name, "missing" if count is None else f"{count} rows")
    return 0


if __name__ == "__main__":
    sys.exit(main())
