"""
Backfill Driver

Walks an ordered chain of periods for one cumulative table. For each period
it loads the previous snapshot, extracts and validates the delta, merges,
and commits the result together with its ledger row.

Rules per period P:
    - P already committed: skipped (duplicate period, not an error)
    - nothing committed yet: P is the seed, previous snapshot is empty
    - otherwise P - 1 must be the latest committed period, else the run
      aborts with OutOfOrderPeriodError

Independent tables have independent chains and may run concurrently.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

import structlog

from salesdw.config import get_settings
from salesdw.config.settings import BackfillSettings
from salesdw.cumulative.delta import PeriodDeltaExtractor
from salesdw.cumulative.merge import MergeStats, merge_with_stats
from salesdw.cumulative.periods import (
    Period,
    coerce_period,
    period_key,
    period_range,
    previous_period,
    validate_chain,
)
from salesdw.cumulative.store import SnapshotStore
from salesdw.cumulative.tables import CumulativeTableSpec
from salesdw.exceptions import DuplicatePeriodError, OutOfOrderPeriodError
from salesdw.quality.validators import create_delta_validator

logger = structlog.get_logger(__name__)


class PeriodStatus(str, Enum):
    COMMITTED = "committed"
    SKIPPED = "skipped"


@dataclass
class PeriodOutcome:
    """Result of processing one period"""
    period: Period
    status: PeriodStatus
    rows: int = 0
    seed: bool = False
    stats: Optional[MergeStats] = None
    duration_ms: float = 0.0


@dataclass
class BackfillReport:
    """Outcome of a backfill run over one table"""
    table: str
    outcomes: List[PeriodOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def committed(self) -> List[Period]:
        return [o.period for o in self.outcomes if o.status == PeriodStatus.COMMITTED]

    @property
    def skipped(self) -> List[Period]:
        return [o.period for o in self.outcomes if o.status == PeriodStatus.SKIPPED]

    def summary(self) -> Dict[str, object]:
        return {
            "table": self.table,
            "committed": [period_key(p) for p in self.committed],
            "skipped": [period_key(p) for p in self.skipped],
            "rows": sum(o.rows for o in self.outcomes),
        }


class BackfillDriver:
    """
    Runs period chains against the warehouse.

    Example:
        driver = BackfillDriver()
        report = await driver.run_backfill(PRODUCT_SALES, [date(2023, 1, 1), date(2023, 1, 2)])
    """

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        extractor: Optional[PeriodDeltaExtractor] = None,
        settings: Optional[BackfillSettings] = None,
    ):
        self.store = store or SnapshotStore()
        self.extractor = extractor or PeriodDeltaExtractor()
        self.settings = settings or get_settings().backfill

    async def _check_seed(self, spec: CumulativeTableSpec, period: Period) -> None:
        if not self.settings.strict_seed:
            return
        earliest = await self.extractor.earliest_period(spec.granularity)
        if earliest is not None and earliest < period:
            raise OutOfOrderPeriodError(
                f"Seed period {period_key(period)} for {spec.name} is after the first "
                f"fact period {period_key(earliest)}; earlier activity would be lost"
            )

    async def run_period(self, spec: CumulativeTableSpec, period: Period) -> PeriodOutcome:
        """
        Process a single period.

        Raises:
            OutOfOrderPeriodError: the predecessor is not the latest committed
                period, or a strict seed would skip earlier facts
            DataQualityError: the delta failed validation
        """
        started = time.perf_counter()
        structlog.contextvars.bind_contextvars(table=spec.name, period=period_key(period))
        try:
            if await self.store.is_committed(spec, period):
                logger.info("Period already committed, skipping")
                return PeriodOutcome(period=period, status=PeriodStatus.SKIPPED)

            latest = await self.store.latest_period(spec)
            seed = latest is None
            if seed:
                await self._check_seed(spec, period)
                previous = spec.empty_snapshot()
                logger.info("Seeding table")
            else:
                expected = previous_period(period, spec.granularity)
                if latest != expected:
                    raise OutOfOrderPeriodError(
                        f"Cannot process {spec.name} period {period_key(period)}: latest "
                        f"committed period is {period_key(latest)}, expected {period_key(expected)}"
                    )
                previous = await self.store.load(spec, expected)

            delta = await self.extractor.extract(spec, period)
            create_delta_validator(spec).validate(delta).raise_for_status(
                f"{spec.name} delta for {period_key(period)}"
            )

            snapshot, stats = merge_with_stats(previous, delta, spec, period)

            try:
                rows = await self.store.commit(spec, period, snapshot)
            except DuplicatePeriodError:
                logger.info("Period committed by a concurrent run, skipping")
                return PeriodOutcome(period=period, status=PeriodStatus.SKIPPED)

            duration_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "Period processed",
                rows=rows,
                seed=seed,
                new_keys=stats.new_keys,
                active_keys=stats.active_keys,
                carried_keys=stats.carried_keys,
                duration_ms=round(duration_ms, 2),
            )
            return PeriodOutcome(
                period=period,
                status=PeriodStatus.COMMITTED,
                rows=rows,
                seed=seed,
                stats=stats,
                duration_ms=duration_ms,
            )
        finally:
            structlog.contextvars.unbind_contextvars("table", "period")

    async def run_backfill(self, spec: CumulativeTableSpec, periods: Sequence) -> BackfillReport:
        """
        Process ``periods`` in order.

        The chain is validated up front: periods must be ascending and
        consecutive. Any fatal error stops the run; periods already
        committed stay committed.
        """
        chain = [coerce_period(p, spec.granularity) for p in periods]
        validate_chain(chain, spec.granularity)

        report = BackfillReport(table=spec.name)
        logger.info(
            "Starting backfill",
            table=spec.name,
            periods=len(chain),
            start=period_key(chain[0]) if chain else None,
            end=period_key(chain[-1]) if chain else None,
        )
        for period in chain:
            report.outcomes.append(await self.run_period(spec, period))

        report.completed_at = datetime.utcnow()
        logger.info("Backfill complete", **report.summary())
        return report

    async def run_tables(
        self,
        specs: Sequence[CumulativeTableSpec],
        start,
        end,
        concurrent: Optional[bool] = None,
    ) -> Dict[str, BackfillReport]:
        """
        Backfill several tables over the same inclusive range.

        Daily and yearly tables interpret ``start``/``end`` at their own
        granularity (a date bound becomes its year for yearly tables).
        """
        if concurrent is None:
            concurrent = self.settings.concurrent_tables

        def chain_for(spec: CumulativeTableSpec) -> List[Period]:
            return period_range(
                coerce_period(start, spec.granularity),
                coerce_period(end, spec.granularity),
                spec.granularity,
            )

        if concurrent:
            chains = [(spec, chain_for(spec)) for spec in specs]
            try:
                # a failing chain cancels its siblings before this returns
                async with asyncio.TaskGroup() as group:
                    tasks = [group.create_task(self.run_backfill(spec, chain)) for spec, chain in chains]
            except ExceptionGroup as group_error:
                for error in group_error.exceptions[1:]:
                    logger.error("Concurrent table backfill failed", error=str(error), error_type=type(error).__name__)
                raise group_error.exceptions[0]
            reports = [task.result() for task in tasks]
        else:
            reports = [await self.run_backfill(spec, chain_for(spec)) for spec in specs]

        return {report.table: report for report in reports}


async def run_backfill(spec: CumulativeTableSpec, periods: Sequence) -> BackfillReport:
    """Backfill one table with default store and extractor"""
    return await BackfillDriver().run_backfill(spec, periods)
