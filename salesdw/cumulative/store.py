"""
Snapshot Store

Persists cumulative snapshots, one row per (key tuple, period), and the
commit ledger that records which periods of each table are complete.

A period is committed by a single transaction containing both its snapshot
rows and its ledger row. If anything fails the transaction rolls back as a
unit, so readers never see a half-written period. Re-committing a period
violates the ledger's (table, period) uniqueness and surfaces as
DuplicatePeriodError.
"""

from typing import Any, Dict, List, Optional

import polars as pl
import structlog
from sqlalchemy import Table, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesdw.config import get_settings
from salesdw.cumulative.history import entries_from_value, HistoryEntry
from salesdw.cumulative.periods import Period, coerce_period, period_key
from salesdw.cumulative.tables import CumulativeTableSpec
from salesdw.database.connection import get_session_factory, session_scope
from salesdw.database.models import Base, SnapshotRun
from salesdw.exceptions import DuplicatePeriodError, SnapshotIntegrityError

logger = structlog.get_logger(__name__)


def snapshot_table(spec: CumulativeTableSpec) -> Table:
    return Base.metadata.tables[spec.name]


def _history_to_json(value) -> List[Dict[str, Any]]:
    entries = entries_from_value(value) or []
    return [entry.to_json() for entry in entries]


def _history_from_json(value) -> List[Dict[str, Any]]:
    return [HistoryEntry.from_mapping(item).to_dict() for item in value or []]


def frame_to_records(frame: pl.DataFrame, spec: CumulativeTableSpec) -> List[Dict[str, Any]]:
    """Snapshot frame to INSERT parameter dicts"""
    records = frame.select(list(spec.snapshot_schema)).to_dicts()
    if spec.history is not None:
        column = spec.history.name
        for record in records:
            record[column] = _history_to_json(record[column])
    return records


def records_to_frame(records: List[Dict[str, Any]], spec: CumulativeTableSpec) -> pl.DataFrame:
    """Database rows to a snapshot frame"""
    if spec.history is not None:
        column = spec.history.name
        records = [{**record, column: _history_from_json(record[column])} for record in records]
    return pl.DataFrame(records, schema=spec.snapshot_schema)


class SnapshotStore:
    """
    Reads and commits cumulative snapshots.

    Example:
        store = SnapshotStore()
        yesterday = await store.load(PRODUCT_SALES, date(2023, 1, 4))
        await store.commit(PRODUCT_SALES, date(2023, 1, 5), today)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        chunk_size: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.chunk_size = chunk_size or get_settings().backfill.insert_chunk_size

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def load(self, spec: CumulativeTableSpec, period: Period) -> pl.DataFrame:
        """All snapshot rows of ``period`` (empty frame if none)"""
        table = snapshot_table(spec)
        query = (
            select(table)
            .where(table.c[spec.period_column] == period)
            .order_by(*[table.c[k] for k in spec.keys])
        )
        async with session_scope(self.session_factory) as db:
            result = await db.execute(query)
            records = [dict(row._mapping) for row in result]
        return records_to_frame(records, spec)

    async def load_range(
        self,
        spec: CumulativeTableSpec,
        start: Period,
        end: Period,
        filters: Optional[Dict[str, Any]] = None,
    ) -> pl.DataFrame:
        """Snapshot rows with ``start <= period <= end``, optionally filtered by key"""
        table = snapshot_table(spec)
        period_col = table.c[spec.period_column]
        query = select(table).where(period_col >= start, period_col <= end)
        for column, value in (filters or {}).items():
            query = query.where(table.c[column] == value)
        query = query.order_by(period_col, *[table.c[k] for k in spec.keys])

        async with session_scope(self.session_factory) as db:
            result = await db.execute(query)
            records = [dict(row._mapping) for row in result]
        return records_to_frame(records, spec)

    async def committed_periods(self, spec: CumulativeTableSpec) -> List[Period]:
        """Committed periods of ``spec``, ascending"""
        query = select(SnapshotRun.period_key).where(SnapshotRun.table_name == spec.name)
        async with session_scope(self.session_factory) as db:
            keys = (await db.execute(query)).scalars().all()
        return sorted(coerce_period(key, spec.granularity) for key in keys)

    async def latest_period(self, spec: CumulativeTableSpec) -> Optional[Period]:
        periods = await self.committed_periods(spec)
        return periods[-1] if periods else None

    async def is_committed(self, spec: CumulativeTableSpec, period: Period) -> bool:
        query = select(func.count(SnapshotRun.run_id)).where(
            SnapshotRun.table_name == spec.name,
            SnapshotRun.period_key == period_key(period),
        )
        async with session_scope(self.session_factory) as db:
            count = (await db.execute(query)).scalar() or 0
        return count > 0

    async def commit(self, spec: CumulativeTableSpec, period: Period, frame: pl.DataFrame) -> int:
        """
        Write one period atomically.

        Returns:
            Number of snapshot rows written

        Raises:
            DuplicatePeriodError: the ledger already holds this period;
                nothing was written
            SnapshotIntegrityError: the snapshot rows collide on a key
                tuple; nothing was written
        """
        key = period_key(period)
        stamped = frame[spec.period_column].unique().to_list() if frame.height else []
        if any(value != period for value in stamped):
            raise ValueError(
                f"Snapshot for {spec.name} contains rows not stamped with period {key}: {stamped}"
            )

        records = frame_to_records(frame, spec)
        table = snapshot_table(spec)

        async with session_scope(self.session_factory) as db:
            db.add(SnapshotRun(table_name=spec.name, period_key=key, row_count=len(records)))
            try:
                await db.flush()
            except IntegrityError as e:
                logger.warning(
                    "Snapshot period already committed",
                    table=spec.name,
                    period=key,
                    error=str(e.orig) if e.orig is not None else str(e),
                )
                raise DuplicatePeriodError(spec.name, key) from e

            try:
                for start in range(0, len(records), self.chunk_size):
                    await db.execute(insert(table), records[start:start + self.chunk_size])
            except IntegrityError as e:
                raise SnapshotIntegrityError(
                    f"Snapshot rows for {spec.name} period {key} violate the key tuple constraint: "
                    f"{e.orig if e.orig is not None else e}"
                ) from e

        logger.info("Committed snapshot period", table=spec.name, period=key, rows=len(records))
        return len(records)
