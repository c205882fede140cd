"""
Warehouse Seeding

Loads the lookup tables, customers, address feed and sales facts from a
directory of CSV files (as written by scripts/generate_dataset.py).
Re-running a seed skips rows whose primary key already exists, and address
changes that already opened a version.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Type, Union

import polars as pl
import structlog
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesdw.config import get_settings
from salesdw.database.connection import get_session_factory, session_scope
from salesdw.database.models import (
    Base,
    Customer,
    PaymentMethod,
    ProductCategory,
    Region,
    SalesDetail,
)
from salesdw.dimensions.scd2 import AddressVersioner
from salesdw.ingestion.transactions import transaction_record

logger = structlog.get_logger(__name__)

# load order respects foreign keys
SEED_FILES = [
    ("product_category.csv", ProductCategory),
    ("region.csv", Region),
    ("payment_method.csv", PaymentMethod),
    ("customer.csv", Customer),
]
ADDRESS_FILE = "customer_address.csv"
SALES_FILE = "sales_detail.csv"


async def bulk_insert(
    model: Type[Base],
    records: List[Dict[str, Any]],
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    chunk_size: Optional[int] = None,
) -> int:
    """Insert records in chunks, ignoring primary key conflicts"""
    if not records:
        return 0

    factory = session_factory or get_session_factory()
    chunk_size = chunk_size or get_settings().backfill.insert_chunk_size

    async with session_scope(factory) as db:
        insert = pg_insert if db.bind.dialect.name == "postgresql" else sqlite_insert
        for i in range(0, len(records), chunk_size):
            chunk = records[i:i + chunk_size]
            stmt = insert(model).values(chunk).on_conflict_do_nothing()
            await db.execute(stmt)

    logger.info("Inserted records", table=model.__tablename__, rows=len(records))
    return len(records)


def read_seed_file(path: Path) -> pl.DataFrame:
    return pl.read_csv(path, try_parse_dates=True)


def sales_records(frame: pl.DataFrame) -> List[Dict[str, Any]]:
    """Validate sales rows; a row with an inconsistent amount fails the seed"""
    records = []
    for row in frame.to_dicts():
        sales_id = row.pop("sales_id", None)
        record = transaction_record(row)
        if sales_id is not None:
            record["sales_id"] = sales_id
        records.append(record)
    return records


async def seed_from_directory(
    directory: Union[str, Path, None] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Dict[str, int]:
    """
    Seed the warehouse from CSV files.

    Missing files are skipped with a warning.

    Returns:
        Rows loaded per table
    """
    directory = Path(directory or get_settings().data_lake.generated_path)
    factory = session_factory or get_session_factory()
    loaded: Dict[str, int] = {}

    logger.info("Starting warehouse seed", directory=str(directory))

    for filename, model in SEED_FILES:
        path = directory / filename
        if not path.exists():
            logger.warning("Seed file not found", file=str(path))
            continue
        records = read_seed_file(path).to_dicts()
        loaded[model.__tablename__] = await bulk_insert(model, records, factory)

    address_path = directory / ADDRESS_FILE
    if address_path.exists():
        versioner = AddressVersioner(factory)
        feed = read_seed_file(address_path).with_row_index("feed_row").select(
            "feed_row",
            pl.col("customer_id").cast(pl.Int64),
            pl.col("address").cast(pl.Utf8),
            pl.col("effective_date").cast(pl.Date),
        )
        # rows that already opened a version are not replayed
        recorded = await versioner.recorded_changes(feed["customer_id"].unique().to_list())
        feed = (
            feed.join(recorded, on=["customer_id", "address", "effective_date"], how="anti")
            .sort(["effective_date", "feed_row"])
        )
        changes = await versioner.apply_changes(feed)
        loaded["customer_address"] = sum(1 for change in changes if change.changed)
    else:
        logger.warning("Seed file not found", file=str(address_path))

    sales_path = directory / SALES_FILE
    if sales_path.exists():
        records = sales_records(read_seed_file(sales_path))
        loaded[SalesDetail.__tablename__] = await bulk_insert(SalesDetail, records, factory)
    else:
        logger.warning("Seed file not found", file=str(sales_path))

    logger.info("Warehouse seed completed", **loaded)
    return loaded
