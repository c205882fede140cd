"""
Validated Transaction Insert

Single-row entry point for new sales. The amount supplied by the caller
must equal the discounted unit price,

    round(unit_price - unit_price * discount, 2)

otherwise the row is rejected and nothing is written.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesdw.database.connection import get_session_factory, session_scope
from salesdw.database.models import SalesDetail
from salesdw.exceptions import TransactionValidationError

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def calc_discount_price(unit_price: Decimal, discount: Decimal) -> Decimal:
    """Discounted unit price rounded half-up to cents"""
    unit_price = Decimal(str(unit_price))
    discount = Decimal(str(discount))
    return (unit_price - unit_price * discount).quantize(CENT, rounding=ROUND_HALF_UP)


class SalesTransaction(BaseModel):
    """Incoming sale as supplied by the caller"""
    customer_id: int
    category_id: int
    region_id: int
    payment_method_id: int
    unit_price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    quantity: int = Field(gt=0)
    discount: Decimal = Field(ge=0, le=1, max_digits=4, decimal_places=2)
    amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    invoice_date: date = Field(default_factory=date.today)

    @field_validator("unit_price", "discount", "amount", mode="before")
    @classmethod
    def parse_decimal(cls, value: Any) -> Any:
        # floats go through str so 0.1 stays 0.1
        if isinstance(value, float):
            return Decimal(str(value))
        return value

    @property
    def expected_amount(self) -> Decimal:
        return calc_discount_price(self.unit_price, self.discount)

    def check_amount(self) -> None:
        if self.amount != self.expected_amount:
            raise TransactionValidationError(
                f"The amount {self.amount} is not equal to the discounted price "
                f"{self.expected_amount}, please check again",
                field="amount",
            )


def parse_transaction(fields: Mapping[str, Any]) -> SalesTransaction:
    """Validate raw fields into a SalesTransaction"""
    try:
        transaction = SalesTransaction.model_validate(dict(fields))
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise TransactionValidationError(
            f"Invalid transaction field '{location}': {first.get('msg')}",
            field=location or None,
        ) from e
    transaction.check_amount()
    return transaction


async def insert_transaction(
    fields: Mapping[str, Any],
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> int:
    """
    Validate and insert one sale in its own transaction.

    Returns:
        The new sales_id

    Raises:
        TransactionValidationError: a field is invalid or the amount does not
            match the discounted price; nothing is written
    """
    transaction = parse_transaction(fields)

    async with session_scope(session_factory or get_session_factory()) as db:
        sale = SalesDetail(**transaction.model_dump())
        db.add(sale)
        await db.flush()
        sales_id = sale.sales_id

    logger.info(
        "Inserted sales transaction",
        sales_id=sales_id,
        customer_id=transaction.customer_id,
        amount=str(transaction.amount),
        invoice_date=transaction.invoice_date.isoformat(),
    )
    return sales_id


def transaction_record(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Validated column dict for bulk loading"""
    return parse_transaction(fields).model_dump()
