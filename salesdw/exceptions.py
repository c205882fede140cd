"""Domain-specific exceptions for the sales data warehouse.

All exceptions inherit from SalesDWError so callers (CLI, API, workflows)
can catch any warehouse error in one place.
"""


class SalesDWError(Exception):
    """Base exception for all warehouse errors."""

    pass


class ConfigError(SalesDWError):
    """Raised for an unknown table name or an unparseable period argument."""

    pass


class DataQualityError(SalesDWError):
    """Raised when validation of a delta or snapshot finds blocking issues."""

    pass


class SnapshotIntegrityError(DataQualityError):
    """Raised when a merge input holds the same key tuple more than once."""

    pass


class BackfillError(SalesDWError):
    """Base class for period-chain violations."""

    pass


class DuplicatePeriodError(BackfillError):
    """Raised when a period has already been committed for a table.

    The backfill driver treats this as "already processed" and skips the
    period; it is never fatal.
    """

    def __init__(self, table: str, period_key: str):
        self.table = table
        self.period_key = period_key
        super().__init__(f"Period {period_key} already committed for {table}")


class OutOfOrderPeriodError(BackfillError):
    """Raised when a period is processed before its predecessor is committed.

    Fatal: continuing would leave every later snapshot under-counted.
    """

    pass


class PeriodOrderError(BackfillError):
    """Raised when a requested period sequence is not strictly consecutive."""

    pass


class TransactionValidationError(SalesDWError):
    """Raised when a single-row sales transaction fails validation.

    Nothing is written when this is raised.
    """

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class AttributeChangeOrderError(SalesDWError):
    """Raised when an attribute change is dated on or before the open version."""

    pass
