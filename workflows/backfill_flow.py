"""
Prefect Workflow Orchestration - Cumulative Backfill

Runs the backfill driver for the cumulative tables:
- optional seeding of the warehouse from generated CSV files
- one backfill task per table, each with its own period chain
- snapshot quality check on the last committed period
- alert on failure
"""

from datetime import date, timedelta
from typing import List, Optional

from prefect import flow, get_run_logger, task

from salesdw.config import get_settings
from salesdw.config.logging import configure_logging
from salesdw.cumulative.backfill import BackfillDriver
from salesdw.cumulative.periods import period_key, previous_period
from salesdw.cumulative.store import SnapshotStore
from salesdw.cumulative.tables import get_table, resolve_tables
from salesdw.database.connection import close_database, init_database
from salesdw.ingestion.loaders import seed_from_directory
from salesdw.quality.validators import create_snapshot_validator


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="seed_warehouse",
    description="Load lookup tables, customers, addresses and sales facts",
    retries=2,
    retry_delay_seconds=30,
)
async def seed_warehouse(source_dir: str) -> dict:
    logger = get_run_logger()
    loaded = await seed_from_directory(source_dir)
    logger.info(f"Seed complete: {loaded}")
    return loaded


@task(
    name="backfill_table",
    description="Process a period range for one cumulative table",
)
async def backfill_table(table: str, start: str, end: str) -> dict:
    logger = get_run_logger()

    driver = BackfillDriver()
    reports = await driver.run_tables([get_table(table)], start, end, concurrent=False)
    summary = reports[table].summary()

    logger.info(
        f"{table}: {len(summary['committed'])} periods committed, "
        f"{len(summary['skipped'])} skipped"
    )
    return summary


@task(
    name="validate_snapshot",
    description="Check the latest snapshot against its predecessor",
)
async def validate_snapshot(table: str) -> dict:
    logger = get_run_logger()
    spec = get_table(table)
    store = SnapshotStore()

    latest = await store.latest_period(spec)
    if latest is None:
        return {"table": table, "passed": True, "checks": 0}

    current = await store.load(spec, latest)
    prior_period = previous_period(latest, spec.granularity)
    previous = None
    if await store.is_committed(spec, prior_period):
        previous = await store.load(spec, prior_period)

    result = create_snapshot_validator(spec, previous).validate(current)
    logger.info(
        f"{table} {period_key(latest)}: validation {result.status.value}, "
        f"{result.passed_checks}/{result.total_checks} checks passed"
    )
    return {
        "table": table,
        "period": period_key(latest),
        "passed": result.status.value != "failed",
        "checks": result.total_checks,
        "success_rate": result.success_rate,
    }


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(alert_type: str, message: str, severity: str = "info") -> None:
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="cumulative_backfill",
    description="Backfill cumulative sales tables over a period range",
)
async def cumulative_backfill(
    start: str,
    end: str,
    tables: Optional[List[str]] = None,
    seed_dir: Optional[str] = None,
) -> dict:
    """
    Backfill pipeline.

    Steps:
    1. Seed the warehouse (when ``seed_dir`` is given)
    2. Backfill every requested table from ``start`` to ``end``
    3. Validate each table's latest snapshot
    """
    logger = get_run_logger()
    configure_logging()
    settings = get_settings()

    specs = resolve_tables(tables or settings.backfill.tables)
    results = {"start": start, "end": end, "tables": {}, "validation": {}}

    await init_database()
    try:
        if seed_dir:
            results["seed"] = await seed_warehouse(seed_dir)

        # one table at a time
        for spec in specs:
            results["tables"][spec.name] = await backfill_table(spec.name, start, end)
            results["validation"][spec.name] = await validate_snapshot(spec.name)

        results["status"] = "success"

    except Exception as e:
        logger.error(f"Cumulative backfill failed: {e}")
        await send_alert(
            alert_type="Backfill Failed",
            message=f"Cumulative backfill {start}..{end} failed: {e}",
            severity="critical",
        )
        raise
    finally:
        await close_database()

    return results


@flow(
    name="daily_cumulative_update",
    description="Advance every cumulative table to include yesterday",
)
async def daily_cumulative_update(process_date: Optional[date] = None) -> dict:
    """
    Daily tables get the single day; yearly tables recompute nothing until
    their year is complete, so they are advanced to the previous full year.
    """
    process_date = process_date or date.today() - timedelta(days=1)
    daily = [s.name for s in resolve_tables() if s.period_column == "present_date"]
    yearly = [s.name for s in resolve_tables() if s.period_column == "current_year"]

    results = {}
    if daily:
        results["daily"] = await cumulative_backfill(
            process_date.isoformat(), process_date.isoformat(), tables=daily
        )
    if yearly:
        last_full_year = process_date.year - 1
        results["yearly"] = await cumulative_backfill(
            str(last_full_year), str(last_full_year), tables=yearly
        )
    return results


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio

    asyncio.run(daily_cumulative_update())
