"""
Cumulative Table Catalogue

Each cumulative table is described by a CumulativeTableSpec: its key tuple,
the denormalized labels carried alongside the keys, the additive metrics and
(optionally) a history array. The delta extractor, merge engine and snapshot
store are all driven by these specs, so adding a rollup means adding a spec
and its model, not new merge code.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import polars as pl

from salesdw.cumulative.periods import Granularity
from salesdw.exceptions import ConfigError

MONEY = pl.Decimal(18, 2)


class MetricKind(str, Enum):
    """How a metric is typed and summed"""
    COUNT = "count"
    AMOUNT = "amount"


@dataclass(frozen=True)
class MetricSpec:
    """Cumulative metric: running sum of ``source`` fact column"""
    name: str
    source: str
    kind: MetricKind = MetricKind.AMOUNT

    @property
    def dtype(self) -> pl.DataType:
        return pl.Int64 if self.kind == MetricKind.COUNT else MONEY


@dataclass(frozen=True)
class LabelSpec:
    """Denormalized label taken from ``source`` in the joined fact frame"""
    name: str
    source: str


@dataclass(frozen=True)
class HistorySpec:
    """Array column of per-period sales statistics"""
    name: str = "sales_stats"
    discount_source: str = "discount"
    amount_source: str = "amount"
    quantity_source: str = "quantity"

    entry_fields: Tuple[str, ...] = field(
        default=("total_discount", "total_amount", "total_quantity"), init=False
    )

    def entry_schema(self, granularity: Granularity) -> Dict[str, pl.DataType]:
        period_dtype = pl.Date if granularity == Granularity.DAY else pl.Int64
        return {
            "period": period_dtype,
            "total_discount": MONEY,
            "total_amount": MONEY,
            "total_quantity": pl.Int64,
        }

    def entry_dtype(self, granularity: Granularity) -> pl.Struct:
        return pl.Struct(self.entry_schema(granularity))

    def dtype(self, granularity: Granularity) -> pl.List:
        return pl.List(self.entry_dtype(granularity))


@dataclass(frozen=True)
class CumulativeTableSpec:
    """
    Grain and shape of one cumulative table.

    Attributes:
        name: Table name (matches the SQLAlchemy model's __tablename__)
        keys: Ordered key tuple; unique per period
        granularity: Day or year
        labels: Denormalized labels
        metrics: Additive running totals
        history: Optional per-period statistics array
        description: Human readable purpose
    """
    name: str
    keys: Tuple[str, ...]
    granularity: Granularity
    labels: Tuple[LabelSpec, ...] = ()
    metrics: Tuple[MetricSpec, ...] = ()
    history: Optional[HistorySpec] = None
    description: str = ""

    @property
    def period_column(self) -> str:
        return "present_date" if self.granularity == Granularity.DAY else "current_year"

    @property
    def period_dtype(self) -> pl.DataType:
        return pl.Date if self.granularity == Granularity.DAY else pl.Int64

    @property
    def label_names(self) -> List[str]:
        return [label.name for label in self.labels]

    @property
    def metric_names(self) -> List[str]:
        return [metric.name for metric in self.metrics]

    @property
    def snapshot_schema(self) -> Dict[str, pl.DataType]:
        """Column order and dtypes of a snapshot frame"""
        schema: Dict[str, pl.DataType] = {key: pl.Int64 for key in self.keys}
        schema.update({label: pl.Utf8 for label in self.label_names})
        schema.update({metric.name: metric.dtype for metric in self.metrics})
        if self.history is not None:
            schema[self.history.name] = self.history.dtype(self.granularity)
        schema[self.period_column] = self.period_dtype
        return schema

    @property
    def delta_schema(self) -> Dict[str, pl.DataType]:
        """Column order and dtypes of a period delta frame"""
        schema: Dict[str, pl.DataType] = {key: pl.Int64 for key in self.keys}
        schema.update({label: pl.Utf8 for label in self.label_names})
        schema.update({metric.name: metric.dtype for metric in self.metrics})
        if self.history is not None:
            entry = self.history.entry_schema(self.granularity)
            for name in self.history.entry_fields:
                schema[name] = entry[name]
        return schema

    def empty_snapshot(self) -> pl.DataFrame:
        return pl.DataFrame(schema=self.snapshot_schema)

    def empty_delta(self) -> pl.DataFrame:
        return pl.DataFrame(schema=self.delta_schema)


# =============================================================================
# CATALOGUE
# =============================================================================

PRODUCT_SALES = CumulativeTableSpec(
    name="cum_product_sales",
    keys=("category_id",),
    granularity=Granularity.DAY,
    labels=(LabelSpec("product_category", "category"),),
    metrics=(
        MetricSpec("cumulative_quantity", "quantity", MetricKind.COUNT),
        MetricSpec("cumulative_sales", "amount"),
    ),
    description="Daily running quantity and sales per product category",
)

REGION_PRODUCT_SALES = CumulativeTableSpec(
    name="cum_region_product_sales",
    keys=("region_id", "category_id"),
    granularity=Granularity.YEAR,
    labels=(
        LabelSpec("region", "region_name"),
        LabelSpec("product_category", "category"),
    ),
    metrics=(MetricSpec("cumulative_sales", "amount"),),
    description="Yearly running sales per region and product category",
)

CUSTOMER_PRODUCT_ENGAGEMENT = CumulativeTableSpec(
    name="cum_customer_product_engage",
    keys=("customer_id", "category_id"),
    granularity=Granularity.YEAR,
    labels=(LabelSpec("product_category", "category"),),
    metrics=(
        MetricSpec("cum_purchase_count", "quantity", MetricKind.COUNT),
        MetricSpec("cumulative_sales", "amount"),
    ),
    description="Yearly running purchases per customer and product category",
)

CUSTOMER_REVENUE = CumulativeTableSpec(
    name="cum_customer_revenue",
    keys=("customer_id",),
    granularity=Granularity.YEAR,
    metrics=(MetricSpec("cum_amount_spent", "amount"),),
    description="Yearly customer lifetime value",
)

CUSTOMER_SALES_HISTORY = CumulativeTableSpec(
    name="cum_customer_sales",
    keys=("customer_id",),
    granularity=Granularity.YEAR,
    labels=(LabelSpec("customer_no", "customer_no"),),
    history=HistorySpec(),
    description="Yearly customer purchase history array",
)

TABLES: Dict[str, CumulativeTableSpec] = {
    spec.name: spec
    for spec in (
        PRODUCT_SALES,
        REGION_PRODUCT_SALES,
        CUSTOMER_PRODUCT_ENGAGEMENT,
        CUSTOMER_REVENUE,
        CUSTOMER_SALES_HISTORY,
    )
}


def get_table(name: str) -> CumulativeTableSpec:
    try:
        return TABLES[name]
    except KeyError:
        raise ConfigError(
            f"Unknown cumulative table '{name}'. Known tables: {sorted(TABLES)}"
        ) from None


def resolve_tables(names: Optional[Iterable[str]] = None) -> List[CumulativeTableSpec]:
    """Specs for ``names``, or the whole catalogue when none are given."""
    if not names:
        return list(TABLES.values())
    return [get_table(name) for name in names]
