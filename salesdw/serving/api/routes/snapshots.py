"""
Snapshot API Endpoints

Read access to committed cumulative snapshots.
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from salesdw.cumulative.periods import Period, coerce_period, period_key
from salesdw.cumulative.store import SnapshotStore
from salesdw.cumulative.tables import TABLES, CumulativeTableSpec
from salesdw.exceptions import PeriodOrderError
from salesdw.serving.api.dependencies import frame_rows, get_snapshot_store, resolve_table

router = APIRouter()
logger = structlog.get_logger(__name__)


class TableInfo(BaseModel):
    """Catalogue entry of one cumulative table"""
    name: str
    description: str
    granularity: str
    keys: List[str]
    period_column: str
    labels: List[str]
    metrics: List[str]
    history: Optional[str] = None
    latest_period: Optional[str] = None


class SnapshotResponse(BaseModel):
    """Snapshot rows of one period"""
    table: str
    period: str
    row_count: int
    rows: List[Dict[str, Any]]


class SnapshotRangeResponse(BaseModel):
    """Snapshot rows of a period range"""
    table: str
    start: str
    end: str
    periods: List[str]
    row_count: int
    rows: List[Dict[str, Any]]


async def resolve_period(
    spec: CumulativeTableSpec,
    store: SnapshotStore,
    period: Optional[str],
) -> Period:
    """Requested period, or the latest committed one when omitted"""
    if period is None:
        latest = await store.latest_period(spec)
        if latest is None:
            raise HTTPException(status_code=404, detail=f"No committed periods for {spec.name}")
        return latest
    return coerce_period(period, spec.granularity)


@router.get("", response_model=List[TableInfo])
async def list_tables(store: SnapshotStore = Depends(get_snapshot_store)) -> List[TableInfo]:
    """Catalogue of cumulative tables with their latest committed period."""
    tables = []
    for spec in TABLES.values():
        latest = await store.latest_period(spec)
        tables.append(
            TableInfo(
                name=spec.name,
                description=spec.description,
                granularity=spec.granularity.value,
                keys=list(spec.keys),
                period_column=spec.period_column,
                labels=spec.label_names,
                metrics=spec.metric_names,
                history=spec.history.name if spec.history else None,
                latest_period=period_key(latest) if latest is not None else None,
            )
        )
    return tables


@router.get("/{table}", response_model=SnapshotResponse)
async def get_snapshot(
    table: str,
    period: Optional[str] = Query(None, description="YYYY-MM-DD for daily tables, YYYY for yearly"),
    store: SnapshotStore = Depends(get_snapshot_store),
) -> SnapshotResponse:
    """Snapshot of one period (latest committed when ``period`` is omitted)."""
    spec = resolve_table(table)
    resolved = await resolve_period(spec, store, period)

    if not await store.is_committed(spec, resolved):
        raise HTTPException(
            status_code=404,
            detail=f"Period {period_key(resolved)} is not committed for {spec.name}",
        )

    frame = await store.load(spec, resolved)
    logger.debug("Snapshot served", table=spec.name, period=period_key(resolved), rows=frame.height)

    return SnapshotResponse(
        table=spec.name,
        period=period_key(resolved),
        row_count=frame.height,
        rows=frame_rows(frame),
    )


@router.get("/{table}/range", response_model=SnapshotRangeResponse)
async def get_snapshot_range(
    table: str,
    start: str = Query(..., description="First period, inclusive"),
    end: str = Query(..., description="Last period, inclusive"),
    store: SnapshotStore = Depends(get_snapshot_store),
) -> SnapshotRangeResponse:
    """Snapshots of every committed period between ``start`` and ``end``."""
    spec = resolve_table(table)
    first = coerce_period(start, spec.granularity)
    last = coerce_period(end, spec.granularity)
    if last < first:
        raise PeriodOrderError(f"End period {end} is before start period {start}")

    frame = await store.load_range(spec, first, last)
    periods = sorted(set(frame[spec.period_column].to_list())) if frame.height else []

    return SnapshotRangeResponse(
        table=spec.name,
        start=period_key(first),
        end=period_key(last),
        periods=[period_key(p) for p in periods],
        row_count=frame.height,
        rows=frame_rows(frame),
    )
