"""
Cumulative Tables Module

Period-by-period running totals: each period's snapshot is the previous
snapshot merged with that period's delta.
"""
from .periods import Granularity, Period, period_range
from .tables import (
    CUSTOMER_PRODUCT_ENGAGEMENT,
    CUSTOMER_REVENUE,
    CUSTOMER_SALES_HISTORY,
    PRODUCT_SALES,
    REGION_PRODUCT_SALES,
    TABLES,
    CumulativeTableSpec,
    get_table,
    resolve_tables,
)
from .history import HistoryEntry, HistoryUnnest, append_history, unnest_history
from .merge import MergeStats, merge, merge_with_stats
from .delta import PeriodDeltaExtractor, aggregate_delta
from .store import SnapshotStore
from .backfill import BackfillDriver, BackfillReport, run_backfill

__all__ = [
    "Granularity",
    "Period",
    "period_range",
    "CumulativeTableSpec",
    "PRODUCT_SALES",
    "REGION_PRODUCT_SALES",
    "CUSTOMER_PRODUCT_ENGAGEMENT",
    "CUSTOMER_REVENUE",
    "CUSTOMER_SALES_HISTORY",
    "TABLES",
    "get_table",
    "resolve_tables",
    "HistoryEntry",
    "HistoryUnnest",
    "append_history",
    "unnest_history",
    "MergeStats",
    "merge",
    "merge_with_stats",
    "PeriodDeltaExtractor",
    "aggregate_delta",
    "SnapshotStore",
    "BackfillDriver",
    "BackfillReport",
    "run_backfill",
]
