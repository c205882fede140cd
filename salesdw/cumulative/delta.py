"""
Period Delta Extractor

Reads the sales facts of exactly one period, attaches denormalized labels
from the lookup tables (left joins, so a missing lookup yields a null label
rather than a dropped fact) and aggregates them to a table's key tuple.
"""

from datetime import date
from typing import Optional

import polars as pl
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesdw.cumulative.periods import (
    Granularity,
    Period,
    period_bounds,
    period_key,
    period_of,
)
from salesdw.cumulative.tables import MONEY, CumulativeTableSpec
from salesdw.database.connection import get_session_factory, session_scope
from salesdw.database.models import Customer, ProductCategory, Region, SalesDetail

logger = structlog.get_logger(__name__)

FACT_SCHEMA = {
    "sales_id": pl.Int64,
    "customer_id": pl.Int64,
    "customer_no": pl.Utf8,
    "category_id": pl.Int64,
    "category": pl.Utf8,
    "region_id": pl.Int64,
    "region_name": pl.Utf8,
    "quantity": pl.Int64,
    "discount": MONEY,
    "amount": MONEY,
    "invoice_date": pl.Date,
}


def aggregate_delta(facts: pl.DataFrame, spec: CumulativeTableSpec, period: Period) -> pl.DataFrame:
    """
    Aggregate fact rows of ``period`` to the grain of ``spec``.

    Facts outside the period are ignored, so a wider frame can be passed in.

    Returns:
        Frame in ``spec.delta_schema`` order, one row per key tuple, sorted
        by key.
    """
    start, end = period_bounds(period, spec.granularity)
    in_period = facts.filter(
        (pl.col("invoice_date") >= start) & (pl.col("invoice_date") < end)
    )
    if in_period.height == 0:
        return spec.empty_delta()

    aggregations = [pl.col(label.source).first().alias(label.name) for label in spec.labels]
    aggregations += [
        pl.col(metric.source).sum().cast(metric.dtype).alias(metric.name)
        for metric in spec.metrics
    ]
    if spec.history is not None:
        history = spec.history
        aggregations += [
            pl.col(history.discount_source).sum().cast(MONEY).alias("total_discount"),
            pl.col(history.amount_source).sum().cast(MONEY).alias("total_amount"),
            pl.col(history.quantity_source).sum().cast(pl.Int64).alias("total_quantity"),
        ]

    schema = spec.delta_schema
    return (
        in_period.group_by(list(spec.keys), maintain_order=True)
        .agg(aggregations)
        .select([pl.col(c).cast(dtype) for c, dtype in schema.items()])
        .sort(list(spec.keys))
    )


class PeriodDeltaExtractor:
    """
    Reads facts from the warehouse and turns them into period deltas.

    Example:
        extractor = PeriodDeltaExtractor()
        delta = await extractor.extract(PRODUCT_SALES, date(2023, 1, 5))
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def load_facts(self, period: Period, granularity: Granularity) -> pl.DataFrame:
        """Fact rows of one period with lookup labels attached"""
        query = (
            select(
                SalesDetail.sales_id,
                SalesDetail.customer_id,
                Customer.customer_no,
                SalesDetail.category_id,
                ProductCategory.category,
                SalesDetail.region_id,
                Region.region_name,
                SalesDetail.quantity,
                SalesDetail.discount,
                SalesDetail.amount,
                SalesDetail.invoice_date,
            )
            .outerjoin(Customer, SalesDetail.customer_id == Customer.customer_id)
            .outerjoin(ProductCategory, SalesDetail.category_id == ProductCategory.category_id)
            .outerjoin(Region, SalesDetail.region_id == Region.region_id)
        )
        if granularity == Granularity.DAY:
            query = query.where(SalesDetail.invoice_date == period)
        else:
            start, end = period_bounds(period, granularity)
            query = query.where(
                SalesDetail.invoice_date >= start,
                SalesDetail.invoice_date < end,
            )

        async with session_scope(self.session_factory) as db:
            result = await db.execute(query)
            rows = [dict(row._mapping) for row in result]

        return pl.DataFrame(rows, schema=FACT_SCHEMA)

    async def extract(self, spec: CumulativeTableSpec, period: Period) -> pl.DataFrame:
        """Delta of ``spec`` for ``period``"""
        facts = await self.load_facts(period, spec.granularity)
        delta = aggregate_delta(facts, spec, period)
        logger.info(
            "Extracted period delta",
            table=spec.name,
            period=period_key(period),
            fact_rows=facts.height,
            delta_rows=delta.height,
        )
        return delta

    async def earliest_period(self, granularity: Granularity) -> Optional[Period]:
        """Period of the oldest fact, None when the fact store is empty"""
        async with session_scope(self.session_factory) as db:
            first: Optional[date] = (
                await db.execute(select(func.min(SalesDetail.invoice_date)))
            ).scalar()
        if first is None:
            return None
        return period_of(first, granularity)
