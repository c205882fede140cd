"""
Command Line Interface

Usage:
    salesdw init-db
    salesdw seed --dir data/generated
    salesdw backfill --start 2023-01-01 --end 2023-12-31 --tables cum_product_sales
    salesdw address-change 42 "456 Oak Ave" 2024-06-01
    salesdw history 42 --period 2024
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import List, Optional

import structlog

from salesdw.config import get_settings
from salesdw.config.logging import configure_logging
from salesdw.cumulative.backfill import BackfillDriver
from salesdw.cumulative.history import HistoryUnnest
from salesdw.cumulative.periods import coerce_period, period_key
from salesdw.cumulative.store import SnapshotStore
from salesdw.cumulative.tables import CUSTOMER_SALES_HISTORY, TABLES, resolve_tables
from salesdw.database.connection import close_database, init_database
from salesdw.dimensions.scd2 import AddressVersioner
from salesdw.exceptions import SalesDWError
from salesdw.ingestion.loaders import seed_from_directory

logger = structlog.get_logger(__name__)


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def cmd_init_db(args: argparse.Namespace) -> int:
    await init_database(create_schema=True)
    _print({"status": "ok", "tables": sorted(TABLES)})
    return 0


async def cmd_seed(args: argparse.Namespace) -> int:
    await init_database(create_schema=args.create_schema)
    loaded = await seed_from_directory(args.dir)
    _print({"status": "ok", "loaded": loaded})
    return 0


async def cmd_backfill(args: argparse.Namespace) -> int:
    await init_database()
    settings = get_settings()

    backfill_settings = settings.backfill
    if args.no_strict_seed:
        backfill_settings = backfill_settings.model_copy(update={"strict_seed": False})

    driver = BackfillDriver(settings=backfill_settings)
    specs = resolve_tables(args.tables or settings.backfill.tables)
    reports = await driver.run_tables(
        specs,
        args.start,
        args.end,
        concurrent=False if args.sequential else None,
    )
    _print({name: report.summary() for name, report in reports.items()})
    return 0


async def cmd_address_change(args: argparse.Namespace) -> int:
    await init_database()
    change = await AddressVersioner().apply_attribute_change(
        args.customer_id, args.address, args.effective_date
    )
    _print({
        "customer_id": args.customer_id,
        "changed": change.changed,
        "closed": change.closed.to_dict() if change.closed else None,
        "current": change.current.to_dict(),
    })
    return 0


async def cmd_history(args: argparse.Namespace) -> int:
    await init_database()
    spec = CUSTOMER_SALES_HISTORY
    store = SnapshotStore()

    period = (
        coerce_period(args.period, spec.granularity)
        if args.period
        else await store.latest_period(spec)
    )
    if period is None:
        logger.error("No committed periods", table=spec.name)
        return 1

    snapshot = await store.load_range(spec, period, period, filters={"customer_id": args.customer_id})
    entries = [
        {"customer_no": identity["customer_no"], **entry.to_json()}
        for identity, entry in HistoryUnnest(snapshot, spec)
    ]
    _print({"customer_id": args.customer_id, "as_of_period": period_key(period), "entries": entries})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="salesdw", description="Cumulative sales data warehouse")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create the warehouse schema")
    init_db.set_defaults(func=cmd_init_db)

    seed = sub.add_parser("seed", help="Load generated CSV files into the warehouse")
    seed.add_argument("--dir", default=None, help="Directory of CSV files")
    seed.add_argument("--create-schema", action="store_true", help="Create missing tables first")
    seed.set_defaults(func=cmd_seed)

    backfill = sub.add_parser("backfill", help="Process a period range for cumulative tables")
    backfill.add_argument("--start", required=True, help="First period (YYYY-MM-DD or YYYY)")
    backfill.add_argument("--end", required=True, help="Last period, inclusive")
    backfill.add_argument("--tables", nargs="*", choices=sorted(TABLES), help="Tables to process")
    backfill.add_argument("--sequential", action="store_true", help="Process tables one at a time")
    backfill.add_argument("--no-strict-seed", action="store_true", help="Allow seeding after the first fact period")
    backfill.set_defaults(func=cmd_backfill)

    address = sub.add_parser("address-change", help="Record a customer address change")
    address.add_argument("customer_id", type=int)
    address.add_argument("address")
    address.add_argument("effective_date", type=date.fromisoformat)
    address.set_defaults(func=cmd_address_change)

    history = sub.add_parser("history", help="Show a customer's yearly purchase history")
    history.add_argument("customer_id", type=int)
    history.add_argument("--period", default=None, help="Snapshot year, latest when omitted")
    history.set_defaults(func=cmd_history)

    return parser


async def _run(args: argparse.Namespace) -> int:
    try:
        return await args.func(args)
    except SalesDWError as e:
        logger.error("Command failed", command=args.command, error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        await close_database()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(log_level=args.log_level)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
