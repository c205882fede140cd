"""
Customers API Endpoints

Per-customer purchase history (unnested from the cumulative history
table) and point-in-time addresses from the SCD-2 address dimension.
"""

from datetime import date
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from salesdw.cumulative.history import HistoryUnnest
from salesdw.cumulative.periods import period_key
from salesdw.cumulative.store import SnapshotStore
from salesdw.cumulative.tables import CUSTOMER_SALES_HISTORY
from salesdw.dimensions.scd2 import AddressVersioner, SCD2Record
from salesdw.serving.api.dependencies import get_address_versioner, get_snapshot_store
from salesdw.serving.api.routes.snapshots import resolve_period

router = APIRouter()
logger = structlog.get_logger(__name__)


class SalesHistoryEntry(BaseModel):
    """One year of a customer's purchases"""
    period: int
    total_discount: str
    total_amount: str
    total_quantity: int


class SalesHistoryResponse(BaseModel):
    customer_id: int
    customer_no: Optional[str]
    as_of_period: str
    entries: List[SalesHistoryEntry]


class AddressVersion(BaseModel):
    """One version of a customer's address"""
    address: str
    start_date: date
    end_date: Optional[date]
    is_current: bool

    @classmethod
    def from_record(cls, record: SCD2Record) -> "AddressVersion":
        return cls(
            address=record.value,
            start_date=record.start_date,
            end_date=record.end_date,
            is_current=record.is_current,
        )


class AddressResponse(BaseModel):
    customer_id: int
    as_of: Optional[date]
    address: str


class AddressHistoryResponse(BaseModel):
    customer_id: int
    versions: List[AddressVersion]


@router.get("/{customer_id}/sales-history", response_model=SalesHistoryResponse)
async def get_sales_history(
    customer_id: int,
    period: Optional[str] = Query(None, description="Snapshot year, latest committed when omitted"),
    store: SnapshotStore = Depends(get_snapshot_store),
) -> SalesHistoryResponse:
    """Year-by-year purchase statistics of one customer."""
    spec = CUSTOMER_SALES_HISTORY
    resolved = await resolve_period(spec, store, period)

    snapshot = await store.load_range(spec, resolved, resolved, filters={"customer_id": customer_id})
    if snapshot.height == 0:
        raise HTTPException(
            status_code=404,
            detail=f"Customer {customer_id} not found in {spec.name} for {period_key(resolved)}",
        )

    customer_no = snapshot["customer_no"][0]
    entries = [
        SalesHistoryEntry(
            period=entry.period,
            total_discount=str(entry.total_discount),
            total_amount=str(entry.total_amount),
            total_quantity=entry.total_quantity,
        )
        for _, entry in HistoryUnnest(snapshot, spec)
    ]

    return SalesHistoryResponse(
        customer_id=customer_id,
        customer_no=customer_no,
        as_of_period=period_key(resolved),
        entries=entries,
    )


@router.get("/{customer_id}/address", response_model=AddressResponse)
async def get_address(
    customer_id: int,
    as_of: Optional[date] = Query(None, description="Date to resolve, current address when omitted"),
    versioner: AddressVersioner = Depends(get_address_versioner),
) -> AddressResponse:
    """Address valid on ``as_of`` (or the open version)."""
    if as_of is None:
        current = await versioner.current_version(customer_id)
        address = current.value if current else None
    else:
        address = await versioner.value_as_of(customer_id, as_of)

    if address is None:
        raise HTTPException(status_code=404, detail=f"No address for customer {customer_id}")

    return AddressResponse(customer_id=customer_id, as_of=as_of, address=address)


@router.get("/{customer_id}/address/history", response_model=AddressHistoryResponse)
async def get_address_history(
    customer_id: int,
    versioner: AddressVersioner = Depends(get_address_versioner),
) -> AddressHistoryResponse:
    """Every address version of one customer, oldest first."""
    versions = await versioner.history(customer_id)
    if not versions:
        raise HTTPException(status_code=404, detail=f"No address for customer {customer_id}")
    return AddressHistoryResponse(
        customer_id=customer_id,
        versions=[AddressVersion.from_record(v) for v in versions],
    )
