"""
History Append Tracker

Array-valued cumulative state: each entity carries an ordered list of
per-period sales statistics. A period with activity appends exactly one
entry; a period without activity leaves the list untouched (the owning
snapshot row is still re-stamped with the current period by the merge).

The nested list is turned back into one row per entry by ``unnest_history``
(DataFrame form) or ``HistoryUnnest`` (lazy, restartable iterator form).
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import polars as pl

from salesdw.cumulative.periods import Period
from salesdw.cumulative.tables import CumulativeTableSpec

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Exact 2-decimal amount; None counts as zero."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


def _coerce_entry_period(value: Any) -> Period:
    if isinstance(value, (date, int)):
        return value
    text = str(value)
    if "-" in text:
        return date.fromisoformat(text)
    return int(text)


@dataclass(frozen=True)
class HistoryEntry:
    """Sales statistics of one entity for one period"""
    period: Period
    total_discount: Decimal
    total_amount: Decimal
    total_quantity: int

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "HistoryEntry":
        """Build from a polars struct row or a stored JSON object."""
        return cls(
            period=_coerce_entry_period(data["period"]),
            total_discount=to_money(data.get("total_discount")),
            total_amount=to_money(data.get("total_amount")),
            total_quantity=int(data.get("total_quantity") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Struct row for a polars ``List(Struct)`` column"""
        return {
            "period": self.period,
            "total_discount": self.total_discount,
            "total_amount": self.total_amount,
            "total_quantity": self.total_quantity,
        }

    def to_json(self) -> Dict[str, Any]:
        """JSON-safe form used for the database column"""
        period = self.period.isoformat() if isinstance(self.period, date) else self.period
        return {
            "period": period,
            "total_discount": str(self.total_discount),
            "total_amount": str(self.total_amount),
            "total_quantity": self.total_quantity,
        }


def append_history(
    previous: Optional[Sequence[HistoryEntry]],
    current: Optional[HistoryEntry],
) -> List[HistoryEntry]:
    """
    Next history array of one entity.

    Args:
        previous: The entity's array as of the previous period, None if the
            entity had no snapshot yet
        current: This period's statistics, None if the entity was inactive

    Returns:
        A new list; ``previous`` is never mutated. Entries are appended in
        call order: no sorting and no de-duplication by period.
    """
    if previous is None:
        return [current] if current is not None else []
    if current is None:
        return list(previous)
    return list(previous) + [current]


def entries_from_value(value: Optional[Sequence[Mapping[str, Any]]]) -> Optional[List[HistoryEntry]]:
    """Decode a stored or polars list value; None stays None."""
    if value is None:
        return None
    return [HistoryEntry.from_mapping(item) for item in value]


def unnest_history(snapshot: pl.DataFrame, spec: CumulativeTableSpec) -> pl.DataFrame:
    """
    One row per history entry, joined back to the owning entity.

    Columns: the key tuple, the labels, then period, total_discount,
    total_amount, total_quantity. Row order follows snapshot order, then
    array order.
    """
    if spec.history is None:
        raise ValueError(f"Table {spec.name} has no history column")

    column = spec.history.name
    identity = list(spec.keys) + spec.label_names

    return (
        snapshot.select(identity + [column])
        .explode(column)
        .filter(pl.col(column).is_not_null())
        .unnest(column)
    )


class HistoryUnnest:
    """
    Lazy unnest of history arrays.

    Iterating yields ``(identity, entry)`` pairs where identity maps key and
    label columns to their values. Each ``iter()`` starts over from the first
    row, so the sequence can be consumed any number of times.

    Example:
        for identity, entry in HistoryUnnest(snapshot, CUSTOMER_SALES_HISTORY):
            print(identity["customer_id"], entry.period, entry.total_amount)
    """

    def __init__(self, snapshot: pl.DataFrame, spec: CumulativeTableSpec):
        if spec.history is None:
            raise ValueError(f"Table {spec.name} has no history column")
        self.snapshot = snapshot
        self.spec = spec

    def __iter__(self) -> Iterator[Tuple[Dict[str, Any], HistoryEntry]]:
        identity_columns = list(self.spec.keys) + self.spec.label_names
        column = self.spec.history.name
        for row in self.snapshot.iter_rows(named=True):
            identity = {name: row[name] for name in identity_columns}
            for item in row[column] or []:
                yield identity, HistoryEntry.from_mapping(item)

    def __len__(self) -> int:
        column = self.spec.history.name
        return int(self.snapshot[column].list.len().fill_null(0).sum())
