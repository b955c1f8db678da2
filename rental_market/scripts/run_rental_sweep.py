#!/usr/bin/env python3
"""Run one expired-rental reconciliation pass against a database."""

from __future__ import annotations

import argparse
import logging
import os
from datetime import date

from rental_market.db.engine import build_engine, build_sessionmaker
from rental_market.services.expiry_sweeper import run_expiry_sweep


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Complete expired rental orders and return their stock.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_MARKET_DB_URL"),
        help="SQLAlchemy URL (default: RENTAL_MARKET_DB_URL)",
    )
    parser.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Reference date YYYY-MM-DD; orders ending before it are completed (default: today)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log each reconciled order")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.db_url:
        parser.error("--db-url is required when RENTAL_MARKET_DB_URL is not set")

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    engine = build_engine(args.db_url)
    try:
        completed = run_expiry_sweep(build_sessionmaker(engine), args.today)
    finally:
        engine.dispose()

    if completed:
        print(f"Completed {len(completed)} rental order(s): {', '.join(str(order_id) for order_id in completed)}")
    else:
        print("No expired rental orders to complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
