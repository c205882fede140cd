"""
SCD Type 2 Versioner

Tracks slowly changing attributes as a sequence of versions, each valid
over a half-open interval [start_date, end_date). At most one version per
entity is open (end_date NULL, is_current TRUE).

A change:
    - with no open version opens one at the effective date
    - with the same value as the open version is a no-op
    - with a different value closes the open version at the effective date
      and opens the new one there

``reconcile`` and ``build_versions`` are the in-memory form of these rules;
``AddressVersioner`` applies them to the customer_address table.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

import polars as pl
import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesdw.database.connection import get_session_factory, session_scope
from salesdw.database.models import CustomerAddress
from salesdw.exceptions import AttributeChangeOrderError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SCD2Record:
    """One version of an entity's attribute"""
    entity_id: int
    value: str
    start_date: date
    end_date: Optional[date] = None
    is_current: bool = True
    version_id: Optional[int] = None

    def covers(self, as_of: date) -> bool:
        return self.start_date <= as_of and (self.end_date is None or self.end_date > as_of)

    def to_dict(self) -> Dict[str, object]:
        return {
            "entity_id": self.entity_id,
            "value": self.value,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "is_current": self.is_current,
        }


@dataclass(frozen=True)
class VersionChange:
    """Effect of one attribute change"""
    current: SCD2Record
    closed: Optional[SCD2Record] = None
    opened: Optional[SCD2Record] = None

    @property
    def changed(self) -> bool:
        return self.opened is not None


def reconcile(
    current: Optional[SCD2Record],
    entity_id: int,
    new_value: str,
    effective_date: date,
) -> VersionChange:
    """
    Decide what a change does to the open version of one entity.

    Raises:
        AttributeChangeOrderError: a different value dated on or before the
            open version's start date
    """
    if current is None:
        opened = SCD2Record(entity_id=entity_id, value=new_value, start_date=effective_date)
        return VersionChange(current=opened, opened=opened)

    if current.value == new_value:
        return VersionChange(current=current)

    if effective_date <= current.start_date:
        raise AttributeChangeOrderError(
            f"Change for entity {entity_id} effective {effective_date.isoformat()} is not after "
            f"the open version starting {current.start_date.isoformat()}"
        )

    closed = replace(current, end_date=effective_date, is_current=False)
    opened = SCD2Record(entity_id=entity_id, value=new_value, start_date=effective_date)
    return VersionChange(current=opened, closed=closed, opened=opened)


def build_versions(changes: Iterable[Tuple[int, str, date]]) -> List[SCD2Record]:
    """
    Version rows for a feed of (entity_id, value, effective_date) changes.

    Changes are applied in feed order per entity. Output is grouped by
    entity (first-seen order) and ordered by start date within an entity.
    """
    versions: Dict[int, List[SCD2Record]] = {}
    for entity_id, value, effective_date in changes:
        history = versions.setdefault(entity_id, [])
        current = history[-1] if history and history[-1].is_current else None
        change = reconcile(current, entity_id, value, effective_date)
        if change.closed is not None:
            history[-1] = change.closed
        if change.opened is not None:
            history.append(change.opened)
    return [record for history in versions.values() for record in history]


def _record(row: CustomerAddress) -> SCD2Record:
    return SCD2Record(
        entity_id=row.customer_id,
        value=row.address,
        start_date=row.start_date,
        end_date=row.end_date,
        is_current=row.is_current,
        version_id=row.version_id,
    )


class AddressVersioner:
    """
    SCD-2 maintenance of customer addresses.

    Changes for the same customer are serialized by a per-customer lock;
    changes for different customers run independently. The partial unique
    index on open versions rejects a second open row written by another
    process.

    Example:
        versioner = AddressVersioner()
        await versioner.apply_attribute_change(42, "456 Oak Ave", date(2024, 6, 1))
        address = await versioner.value_as_of(42, date(2024, 3, 1))
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def apply_attribute_change(
        self,
        customer_id: int,
        address: str,
        effective_date: date,
    ) -> VersionChange:
        """Apply one address change and return what happened."""
        async with self._locks[customer_id]:
            async with session_scope(self.session_factory) as db:
                row = (
                    await db.execute(
                        select(CustomerAddress)
                        .where(
                            CustomerAddress.customer_id == customer_id,
                            CustomerAddress.is_current.is_(True),
                        )
                        .with_for_update()
                    )
                ).scalar_one_or_none()

                change = reconcile(
                    _record(row) if row is not None else None,
                    customer_id,
                    address,
                    effective_date,
                )
                if not change.changed:
                    logger.debug("Address unchanged", customer_id=customer_id)
                    return change

                if change.closed is not None:
                    await db.execute(
                        update(CustomerAddress)
                        .where(CustomerAddress.version_id == row.version_id)
                        .values(end_date=change.closed.end_date, is_current=False)
                    )
                    await db.flush()

                opened = CustomerAddress(
                    customer_id=customer_id,
                    address=change.opened.value,
                    start_date=change.opened.start_date,
                    end_date=None,
                    is_current=True,
                )
                db.add(opened)
                await db.flush()
                current = replace(change.opened, version_id=opened.version_id)

        logger.info(
            "Address version opened",
            customer_id=customer_id,
            start_date=effective_date.isoformat(),
            closed_version=change.closed.version_id if change.closed else None,
        )
        return VersionChange(current=current, closed=change.closed, opened=current)

    async def apply_changes(self, feed: pl.DataFrame) -> List[VersionChange]:
        """
        Apply a feed with columns customer_id, address, effective_date.

        Rows are applied in feed order; the first rejected change stops the
        feed and propagates its error.
        """
        changes = []
        for row in feed.select(["customer_id", "address", "effective_date"]).iter_rows(named=True):
            changes.append(
                await self.apply_attribute_change(
                    row["customer_id"], row["address"], row["effective_date"]
                )
            )
        logger.info(
            "Applied address feed",
            rows=len(changes),
            versions_opened=sum(1 for c in changes if c.changed),
        )
        return changes

    async def recorded_changes(self, customer_ids: Iterable[int]) -> pl.DataFrame:
        """Changes already stored as versions, in feed shape"""
        async with session_scope(self.session_factory) as db:
            rows = (
                await db.execute(
                    select(
                        CustomerAddress.customer_id,
                        CustomerAddress.address,
                        CustomerAddress.start_date,
                    ).where(CustomerAddress.customer_id.in_(list(customer_ids)))
                )
            ).all()
        return pl.DataFrame(
            [tuple(row) for row in rows],
            schema={"customer_id": pl.Int64, "address": pl.Utf8, "effective_date": pl.Date},
            orient="row",
        )

    async def current_version(self, customer_id: int) -> Optional[SCD2Record]:
        async with session_scope(self.session_factory) as db:
            row = (
                await db.execute(
                    select(CustomerAddress).where(
                        CustomerAddress.customer_id == customer_id,
                        CustomerAddress.is_current.is_(True),
                    )
                )
            ).scalar_one_or_none()
            return _record(row) if row is not None else None

    async def history(self, customer_id: int) -> List[SCD2Record]:
        """All versions of one customer ordered by start date"""
        async with session_scope(self.session_factory) as db:
            rows = (
                await db.execute(
                    select(CustomerAddress)
                    .where(CustomerAddress.customer_id == customer_id)
                    .order_by(CustomerAddress.start_date)
                )
            ).scalars().all()
            return [_record(row) for row in rows]

    async def value_as_of(self, customer_id: int, as_of: date) -> Optional[str]:
        """Address valid on ``as_of``, None if the customer had none yet"""
        async with session_scope(self.session_factory) as db:
            return (
                await db.execute(
                    select(CustomerAddress.address).where(
                        CustomerAddress.customer_id == customer_id,
                        CustomerAddress.start_date <= as_of,
                        or_(
                            CustomerAddress.end_date.is_(None),
                            CustomerAddress.end_date > as_of,
                        ),
                    )
                )
            ).scalar_one_or_none()
