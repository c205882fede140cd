"""
Integration Tests - Snapshot Store
"""
from datetime import date
from decimal import Decimal

import polars as pl
import pytest

from salesdw.cumulative.history import entries_from_value
from salesdw.cumulative.tables import CUSTOMER_SALES_HISTORY, PRODUCT_SALES
from salesdw.exceptions import DuplicatePeriodError, SnapshotIntegrityError


def product_snapshot(day, rows):
    return pl.DataFrame(
        [{**row, "present_date": day} for row in rows],
        schema=PRODUCT_SALES.snapshot_schema,
    )


ROWS = [
    {"category_id": 1, "product_category": "Electronics",
     "cumulative_quantity": 100, "cumulative_sales": Decimal("500.00")},
    {"category_id": 2, "product_category": "Clothing",
     "cumulative_quantity": 4, "cumulative_sales": Decimal("80.00")},
    {"category_id": 3, "product_category": None,
     "cumulative_quantity": 1, "cumulative_sales": Decimal("12.34")},
]


class TestSnapshotStore:
    """Tests for SnapshotStore"""

    @pytest.mark.asyncio
    async def test_commit_and_load(self, store):
        day = date(2023, 1, 4)
        snapshot = product_snapshot(day, ROWS)

        written = await store.commit(PRODUCT_SALES, day, snapshot)
        loaded = await store.load(PRODUCT_SALES, day)

        assert written == 3
        assert loaded.equals(snapshot)
        assert await store.committed_periods(PRODUCT_SALES) == [day]

    @pytest.mark.asyncio
    async def test_empty_period_still_recorded(self, store):
        day = date(2023, 1, 1)

        assert await store.commit(PRODUCT_SALES, day, PRODUCT_SALES.empty_snapshot()) == 0

        assert await store.is_committed(PRODUCT_SALES, day)
        assert (await store.load(PRODUCT_SALES, day)).height == 0

    @pytest.mark.asyncio
    async def test_duplicate_commit_writes_nothing(self, store):
        day = date(2023, 1, 4)
        await store.commit(PRODUCT_SALES, day, product_snapshot(day, ROWS[:1]))

        with pytest.raises(DuplicatePeriodError) as exc_info:
            await store.commit(PRODUCT_SALES, day, product_snapshot(day, ROWS))

        assert exc_info.value.period_key == "2023-01-04"
        assert (await store.load(PRODUCT_SALES, day)).height == 1

    @pytest.mark.asyncio
    async def test_key_collision_is_not_a_duplicate_period(self, store):
        day = date(2023, 1, 4)
        snapshot = product_snapshot(day, [ROWS[0], ROWS[1], ROWS[0]])

        with pytest.raises(SnapshotIntegrityError):
            await store.commit(PRODUCT_SALES, day, snapshot)

        assert not await store.is_committed(PRODUCT_SALES, day)
        assert (await store.load(PRODUCT_SALES, day)).height == 0

    @pytest.mark.asyncio
    async def test_unstamped_rows_rejected(self, store):
        snapshot = product_snapshot(date(2023, 1, 3), ROWS)

        with pytest.raises(ValueError):
            await store.commit(PRODUCT_SALES, date(2023, 1, 4), snapshot)

        assert not await store.is_committed(PRODUCT_SALES, date(2023, 1, 4))

    @pytest.mark.asyncio
    async def test_history_round_trip(self, store):
        snapshot = pl.DataFrame(
            [{
                "customer_id": 1,
                "customer_no": "CUST-000001",
                "sales_stats": [
                    {"period": 2023, "total_discount": Decimal("0.10"),
                     "total_amount": Decimal("15.00"), "total_quantity": 3},
                    {"period": 2024, "total_discount": Decimal("0.05"),
                     "total_amount": Decimal("8.00"), "total_quantity": 3},
                ],
                "current_year": 2025,
            }],
            schema=CUSTOMER_SALES_HISTORY.snapshot_schema,
        )

        await store.commit(CUSTOMER_SALES_HISTORY, 2025, snapshot)
        loaded = await store.load(CUSTOMER_SALES_HISTORY, 2025)

        entries = entries_from_value(loaded["sales_stats"].to_list()[0])
        assert [e.period for e in entries] == [2023, 2024]
        assert entries[0].total_amount == Decimal("15.00")
        assert loaded["current_year"].to_list() == [2025]

    @pytest.mark.asyncio
    async def test_load_range_with_filter(self, store):
        for day in (date(2023, 1, 4), date(2023, 1, 5), date(2023, 1, 6)):
            await store.commit(PRODUCT_SALES, day, product_snapshot(day, ROWS))

        frame = await store.load_range(
            PRODUCT_SALES, date(2023, 1, 5), date(2023, 1, 6), filters={"category_id": 2}
        )

        assert frame["present_date"].to_list() == [date(2023, 1, 5), date(2023, 1, 6)]
        assert await store.latest_period(PRODUCT_SALES) == date(2023, 1, 6)
