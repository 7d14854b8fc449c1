#!/usr/bin/env python3
"""
Create or inspect the edge engine database.

    python scripts/init_db.py            create missing tables
    python scripts/init_db.py --drop     drop and recreate (asks first)
    python scripts/init_db.py --check    connectivity only
    python scripts/init_db.py --status   catalog and parlay counts
"""

import argparse
import logging

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import func, inspect, text

from edge_engine.models import (
    Base,
    MarketOutcomeRecord,
    ParlayRecord,
    SessionLocal,
    engine,
    init_db,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_tables(drop_existing: bool = False) -> bool:
    if drop_existing:
        answer = input("Drop the market catalog and all stored parlays? Type 'yes' to confirm: ")
        if answer.lower() != "yes":
            logger.info("Aborted.")
            return False
        Base.metadata.drop_all(bind=engine)
        logger.warning("Dropped tables: %s", ", ".join(Base.metadata.tables))

    init_db(engine)
    logger.info("Tables present: %s", ", ".join(inspect(engine).get_table_names()))
    return True


def check_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False
    logger.info("Database connection OK (%s)", engine.url.get_backend_name())
    return True


def catalog_status(db) -> dict:
    """Row counts: catalog matches by status and parlays by status."""
    matches = dict(
        db.query(
            MarketOutcomeRecord.match_status,
            func.count(func.distinct(MarketOutcomeRecord.match_id)),
        )
        .group_by(MarketOutcomeRecord.match_status)
        .all()
    )
    parlays = dict(
        db.query(ParlayRecord.status, func.count(ParlayRecord.id))
        .group_by(ParlayRecord.status)
        .all()
    )
    return {"matches": matches, "parlays": parlays}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create or inspect the edge engine database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first")
    parser.add_argument("--check", action="store_true", help="Only check the connection")
    parser.add_argument("--status", action="store_true", help="Report catalog and parlay counts")
    args = parser.parse_args(argv)

    if args.check:
        return 0 if check_connection() else 1
    if args.status:
        db = SessionLocal()
        try:
            status = catalog_status(db)
        finally:
            db.close()
        logger.info("Catalog matches by status: %s", status["matches"] or "none")
        logger.info("Parlays by status: %s", status["parlays"] or "none")
        return 0
    return 0 if create_tables(drop_existing=args.drop) else 1


if __name__ == "__main__":
    raise SystemExit(main())
