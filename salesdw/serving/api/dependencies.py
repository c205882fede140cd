"""
Shared FastAPI dependencies.
"""

from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, List

import polars as pl
from fastapi import HTTPException

from salesdw.cumulative.store import SnapshotStore
from salesdw.cumulative.tables import CumulativeTableSpec, get_table
from salesdw.dimensions.scd2 import AddressVersioner
from salesdw.exceptions import ConfigError


def get_snapshot_store() -> SnapshotStore:
    return SnapshotStore()


@lru_cache
def get_address_versioner() -> AddressVersioner:
    # one instance so per-customer locks are shared across requests
    return AddressVersioner()


def resolve_table(table: str) -> CumulativeTableSpec:
    try:
        return get_table(table)
    except ConfigError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def frame_rows(frame: pl.DataFrame) -> List[Dict[str, Any]]:
    """Frame rows with money as exact decimal strings"""
    return [_jsonable(row) for row in frame.to_dicts()]
