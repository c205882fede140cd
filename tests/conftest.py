"""
Test Suite Configuration
"""
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, List

import polars as pl
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from salesdw.config import Settings
from salesdw.config.settings import BackfillSettings
from salesdw.cumulative.backfill import BackfillDriver
from salesdw.cumulative.delta import FACT_SCHEMA, PeriodDeltaExtractor
from salesdw.cumulative.store import SnapshotStore
from salesdw.database.connection import build_session_factory
from salesdw.database.models import Base, Customer, PaymentMethod, ProductCategory, Region
from salesdw.ingestion.loaders import bulk_insert
from salesdw.ingestion.transactions import calc_discount_price, insert_transaction

CATEGORIES = [
    {"category_id": 1, "category": "Electronics"},
    {"category_id": 2, "category": "Clothing"},
    {"category_id": 3, "category": "Books"},
]
REGIONS = [
    {"region_id": 1, "region_name": "East"},
    {"region_id": 2, "region_name": "West"},
]
PAYMENT_METHODS = [
    {"method_id": 1, "payment_method": "Cash", "is_active": 1},
    {"method_id": 2, "payment_method": "Credit Card", "is_active": 1},
]
CUSTOMERS = [
    {"customer_id": 1, "customer_no": "CUST-000001", "first_name": "Ada", "last_name": "Byrne"},
    {"customer_id": 2, "customer_no": "CUST-000002", "first_name": "Kofi", "last_name": "Mensah"},
    {"customer_id": 3, "customer_no": "CUST-000003", "first_name": "Lena", "last_name": "Vogel"},
]


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path}/warehouse.db"


@pytest_asyncio.fixture
async def engine(db_url) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh warehouse schema in a temporary SQLite file"""
    engine = create_async_engine(db_url, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory) -> SnapshotStore:
    # small chunks so multi-chunk commits are exercised
    return SnapshotStore(session_factory, chunk_size=2)


@pytest.fixture
def extractor(session_factory) -> PeriodDeltaExtractor:
    return PeriodDeltaExtractor(session_factory)


@pytest.fixture
def backfill_settings(test_settings) -> BackfillSettings:
    return test_settings.backfill.model_copy(update={"strict_seed": True, "concurrent_tables": False})


@pytest.fixture
def driver(store, extractor, backfill_settings) -> BackfillDriver:
    return BackfillDriver(store=store, extractor=extractor, settings=backfill_settings)


@pytest_asyncio.fixture
async def lookups(session_factory) -> None:
    """Categories, regions, payment methods and customers"""
    await bulk_insert(ProductCategory, CATEGORIES, session_factory)
    await bulk_insert(Region, REGIONS, session_factory)
    await bulk_insert(PaymentMethod, PAYMENT_METHODS, session_factory)
    await bulk_insert(Customer, CUSTOMERS, session_factory)


def sale_fields(
    customer_id: int,
    category_id: int,
    unit_price: str,
    quantity: int,
    invoice_date: date,
    discount: str = "0.00",
    region_id: int = 1,
    payment_method_id: int = 1,
) -> Dict:
    """Fields of a consistent sale (amount = discounted unit price)"""
    price = Decimal(unit_price)
    disc = Decimal(discount)
    return {
        "customer_id": customer_id,
        "category_id": category_id,
        "region_id": region_id,
        "payment_method_id": payment_method_id,
        "unit_price": price,
        "quantity": quantity,
        "discount": disc,
        "amount": calc_discount_price(price, disc),
        "invoice_date": invoice_date,
    }


@pytest.fixture
def lookup_rows() -> Dict[str, List[Dict]]:
    return {
        "product_category": CATEGORIES,
        "region": REGIONS,
        "payment_method": PAYMENT_METHODS,
        "customer": CUSTOMERS,
    }


@pytest.fixture
def make_sale():
    return sale_fields


@pytest.fixture
def add_sale(session_factory, lookups):
    """Insert a validated sale and return its sales_id"""
    async def _add(*args, **kwargs) -> int:
        return await insert_transaction(sale_fields(*args, **kwargs), session_factory)
    return _add


def build_facts(rows: List[Dict]) -> pl.DataFrame:
    """Joined fact frame as produced by the extractor"""
    defaults = {
        "sales_id": None,
        "customer_id": 1,
        "customer_no": "CUST-000001",
        "category_id": 1,
        "category": "Electronics",
        "region_id": 1,
        "region_name": "East",
        "quantity": 1,
        "discount": Decimal("0.00"),
        "amount": Decimal("0.00"),
        "invoice_date": date(2023, 1, 1),
    }
    records = []
    for i, row in enumerate(rows, start=1):
        record = {**defaults, "sales_id": i, **row}
        for money in ("discount", "amount"):
            record[money] = Decimal(str(record[money]))
        records.append(record)
    return pl.DataFrame(records, schema=FACT_SCHEMA)


@pytest.fixture
def make_facts():
    return build_facts


@pytest.fixture
def electronics_day_one() -> pl.DataFrame:
    """cum_product_sales snapshot for 2023-01-04"""
    return pl.DataFrame(
        {
            "category_id": [1],
            "product_category": ["Electronics"],
            "cumulative_quantity": [100],
            "cumulative_sales": [Decimal("500.00")],
            "present_date": [date(2023, 1, 4)],
        },
        schema={
            "category_id": pl.Int64,
            "product_category": pl.Utf8,
            "cumulative_quantity": pl.Int64,
            "cumulative_sales": pl.Decimal(18, 2),
            "present_date": pl.Date,
        },
    )
