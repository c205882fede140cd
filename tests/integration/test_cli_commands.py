"""
Integration Tests - Command Line Interface
"""
import asyncio
from datetime import date
from decimal import Decimal

import polars as pl
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from salesdw.cli import main
from salesdw.config import get_settings
from salesdw.cumulative.store import SnapshotStore
from salesdw.cumulative.tables import CUSTOMER_REVENUE, PRODUCT_SALES, TABLES
from salesdw.database.connection import build_session_factory


@pytest.fixture
def cli_db(tmp_path, monkeypatch) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path}/cli.db"
    monkeypatch.setenv("DATABASE_URL", url)
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest.fixture
def seed_dir(tmp_path, lookup_rows):
    directory = tmp_path / "generated"
    directory.mkdir()
    for name, rows in lookup_rows.items():
        pl.DataFrame(rows).write_csv(directory / f"{name}.csv")
    pl.DataFrame({
        "customer_id": [1],
        "address": ["123 Main St"],
        "effective_date": ["2023-01-01"],
    }).write_csv(directory / "customer_address.csv")
    pl.DataFrame({
        "sales_id": [1, 2],
        "customer_id": [1, 2],
        "category_id": [1, 1],
        "region_id": [1, 2],
        "payment_method_id": [1, 2],
        "unit_price": ["500.00", "90.00"],
        "quantity": [100, 20],
        "discount": ["0.00", "0.00"],
        "amount": ["500.00", "90.00"],
        "invoice_date": ["2023-01-04", "2023-01-05"],
    }).write_csv(directory / "sales_detail.csv")
    return directory


async def read_warehouse(url: str):
    engine = create_async_engine(url, poolclass=NullPool)
    store = SnapshotStore(build_session_factory(engine))
    try:
        committed = {spec.name: await store.committed_periods(spec) for spec in TABLES.values()}
        product = await store.load(PRODUCT_SALES, date(2023, 1, 5))
        revenue = await store.load(CUSTOMER_REVENUE, 2023)
    finally:
        await engine.dispose()
    return committed, product, revenue


class TestBackfillCommand:
    """Tests for `salesdw backfill` run through main()"""

    def test_iso_dates_drive_daily_and_yearly_tables(self, cli_db, seed_dir):
        assert main(["init-db"]) == 0
        assert main(["seed", "--dir", str(seed_dir)]) == 0

        exit_code = main([
            "backfill", "--start", "2023-01-04", "--end", "2023-01-05",
            "--tables", *sorted(TABLES), "--sequential",
        ])

        assert exit_code == 0
        committed, product, revenue = asyncio.run(read_warehouse(cli_db))
        for spec in TABLES.values():
            expected = [date(2023, 1, 4), date(2023, 1, 5)] if spec.period_column == "present_date" else [2023]
            assert committed[spec.name] == expected
        assert product.select("cumulative_quantity", "cumulative_sales").rows() == [(120, Decimal("590.00"))]
        assert dict(revenue.select("customer_id", "cum_amount_spent").rows()) == {
            1: Decimal("500.00"),
            2: Decimal("90.00"),
        }

    def test_gap_fails_concurrent_run(self, cli_db, seed_dir):
        assert main(["init-db"]) == 0
        assert main(["seed", "--dir", str(seed_dir)]) == 0
        assert main(["backfill", "--start", "2023-01-04", "--end", "2023-01-05"]) == 0

        exit_code = main([
            "backfill", "--start", "2023-01-07", "--end", "2023-01-07",
            "--tables", "cum_product_sales", "cum_customer_revenue",
        ])

        assert exit_code == 1
        committed, _, _ = asyncio.run(read_warehouse(cli_db))
        assert committed[PRODUCT_SALES.name] == [date(2023, 1, 4), date(2023, 1, 5)]
