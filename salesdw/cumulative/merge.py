"""
Merge Engine

Combines the snapshot of the previous period with the delta of the current
period into the snapshot of the current period:

    previous  FULL OUTER JOIN  delta  ON key tuple
    labels   = coalesce(delta, previous)
    metrics  = coalesce(previous, 0) + coalesce(delta, 0)
    history  = append_history(previous, delta entry)
    period   = the period being processed, for every row

Every row is stamped with the current period, including keys that had no
activity, so the next period always finds the full key set as "previous".
The functions here are pure: no I/O, no state between calls.
"""

from dataclasses import dataclass
from typing import List, Tuple

import polars as pl
import structlog

from salesdw.cumulative.history import HistoryEntry, append_history, entries_from_value
from salesdw.cumulative.periods import Period, period_key
from salesdw.cumulative.tables import CumulativeTableSpec
from salesdw.exceptions import SnapshotIntegrityError

logger = structlog.get_logger(__name__)

PREVIOUS_SUFFIX = "__previous"
IN_DELTA = "__in_delta"
IN_PREVIOUS = "__in_previous"


@dataclass
class MergeStats:
    """Key movement of one merge"""
    new_keys: int = 0
    active_keys: int = 0
    carried_keys: int = 0
    label_conflicts: int = 0

    @property
    def total_keys(self) -> int:
        return self.new_keys + self.active_keys + self.carried_keys


def _require_columns(frame: pl.DataFrame, columns: List[str], side: str, spec: CumulativeTableSpec) -> None:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise SnapshotIntegrityError(f"{side} frame for {spec.name} is missing columns {missing}")


def _require_unique_keys(frame: pl.DataFrame, side: str, spec: CumulativeTableSpec) -> None:
    if frame.height == 0:
        return
    duplicated = frame.select(list(spec.keys)).is_duplicated()
    if duplicated.any():
        sample = frame.filter(duplicated).select(list(spec.keys)).head(5).to_dicts()
        raise SnapshotIntegrityError(
            f"{side} frame for {spec.name} has duplicate key tuples: {sample}"
        )


def _prepare_previous(previous: pl.DataFrame, spec: CumulativeTableSpec) -> pl.DataFrame:
    value_columns = spec.label_names + spec.metric_names
    if spec.history is not None:
        value_columns.append(spec.history.name)
    _require_columns(previous, list(spec.keys) + value_columns, "previous", spec)
    _require_unique_keys(previous, "previous", spec)

    schema = spec.snapshot_schema
    return (
        previous.select(list(spec.keys) + value_columns)
        .with_columns([pl.col(c).cast(schema[c]) for c in list(spec.keys) + value_columns])
        .rename({c: f"{c}{PREVIOUS_SUFFIX}" for c in value_columns})
        .with_columns(pl.lit(True).alias(IN_PREVIOUS))
    )


def _prepare_delta(delta: pl.DataFrame, spec: CumulativeTableSpec) -> pl.DataFrame:
    schema = spec.delta_schema
    columns = list(schema)
    _require_columns(delta, columns, "delta", spec)
    _require_unique_keys(delta, "delta", spec)

    return (
        delta.select(columns)
        .with_columns([pl.col(c).cast(schema[c]) for c in columns])
        .with_columns(pl.lit(True).alias(IN_DELTA))
    )


def _label_conflicts(joined: pl.DataFrame, spec: CumulativeTableSpec) -> pl.DataFrame:
    """Rows whose labels differ between previous and delta"""
    if not spec.labels:
        return joined.clear()

    differs = [
        pl.col(label).is_not_null()
        & pl.col(f"{label}{PREVIOUS_SUFFIX}").is_not_null()
        & (pl.col(label) != pl.col(f"{label}{PREVIOUS_SUFFIX}"))
        for label in spec.label_names
    ]
    return joined.filter(
        pl.col(IN_DELTA).fill_null(False)
        & pl.col(IN_PREVIOUS).fill_null(False)
        & pl.any_horizontal(differs)
    )


def _merged_history(joined: pl.DataFrame, spec: CumulativeTableSpec, period: Period) -> pl.Series:
    history = spec.history
    previous_values = joined[f"{history.name}{PREVIOUS_SUFFIX}"].to_list()
    active = joined[IN_DELTA].fill_null(False).to_list()
    stats = joined.select(list(history.entry_fields)).to_dicts()

    arrays = []
    for prior, is_active, row in zip(previous_values, active, stats):
        entry = HistoryEntry.from_mapping({"period": period, **row}) if is_active else None
        merged = append_history(entries_from_value(prior), entry)
        arrays.append([e.to_dict() for e in merged])

    return pl.Series(history.name, arrays, dtype=history.dtype(spec.granularity))


def merge_with_stats(
    previous: pl.DataFrame,
    delta: pl.DataFrame,
    spec: CumulativeTableSpec,
    period: Period,
) -> Tuple[pl.DataFrame, MergeStats]:
    """
    Merge and report how keys moved.

    Args:
        previous: Snapshot rows of the preceding period (empty on the seed run)
        delta: Aggregates computed only from facts of ``period``
        spec: Table being merged
        period: Period being processed

    Returns:
        (next snapshot frame in ``spec.snapshot_schema`` order sorted by key,
        merge statistics)

    Raises:
        SnapshotIntegrityError: if a required column is missing or a key tuple
            repeats within an input
    """
    keys = list(spec.keys)
    current = _prepare_delta(delta, spec)
    prior = _prepare_previous(previous, spec)

    joined = current.join(prior, on=keys, how="full", coalesce=True)

    in_delta = pl.col(IN_DELTA).fill_null(False)
    in_previous = pl.col(IN_PREVIOUS).fill_null(False)
    counts = joined.select(
        (in_delta & ~in_previous).sum().alias("new"),
        (in_delta & in_previous).sum().alias("active"),
        (~in_delta & in_previous).sum().alias("carried"),
    ).row(0)

    conflicts = _label_conflicts(joined, spec)
    for row in conflicts.iter_rows(named=True):
        logger.warning(
            "Label conflict between snapshot and delta, keeping delta label",
            table=spec.name,
            period=period_key(period),
            key={k: row[k] for k in keys},
            labels={
                label: {"previous": row[f"{label}{PREVIOUS_SUFFIX}"], "current": row[label]}
                for label in spec.label_names
            },
        )

    columns = [pl.col(k) for k in keys]
    columns += [
        pl.coalesce(pl.col(label), pl.col(f"{label}{PREVIOUS_SUFFIX}")).alias(label)
        for label in spec.label_names
    ]
    for metric in spec.metrics:
        zero = pl.lit(0).cast(metric.dtype)
        columns.append(
            (
                pl.col(f"{metric.name}{PREVIOUS_SUFFIX}").fill_null(zero)
                + pl.col(metric.name).fill_null(zero)
            )
            .cast(metric.dtype)
            .alias(metric.name)
        )
    columns.append(pl.lit(period, dtype=spec.period_dtype).alias(spec.period_column))

    result = joined.select(columns)
    if spec.history is not None:
        result = result.with_columns(_merged_history(joined, spec, period))

    result = result.select(list(spec.snapshot_schema)).sort(keys)

    stats = MergeStats(
        new_keys=int(counts[0] or 0),
        active_keys=int(counts[1] or 0),
        carried_keys=int(counts[2] or 0),
        label_conflicts=conflicts.height,
    )
    logger.debug(
        "Merged snapshot",
        table=spec.name,
        period=period_key(period),
        rows=result.height,
        new_keys=stats.new_keys,
        active_keys=stats.active_keys,
        carried_keys=stats.carried_keys,
    )
    return result, stats


def merge(
    previous: pl.DataFrame,
    delta: pl.DataFrame,
    spec: CumulativeTableSpec,
    period: Period,
) -> pl.DataFrame:
    """
    Next snapshot from the previous snapshot and the current delta.

    Example:
        >>> next_snapshot = merge(yesterday, today_delta, PRODUCT_SALES, date(2023, 1, 5))
    """
    result, _ = merge_with_stats(previous, delta, spec, period)
    return result
