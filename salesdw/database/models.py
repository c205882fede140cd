"""
Database Models - Retail Sales Warehouse

Operational (OLTP) tables:
- ProductCategory, Region, PaymentMethod, Customer: reference lookups
- SalesDetail: append-only transaction facts
- CustomerAddress: SCD Type 2 address history

Cumulative (OLAP) tables, one row per key tuple per period:
- CumProductSales: daily running quantity/sales per category
- CumRegionProductSales: yearly running sales per region and category
- CumCustomerProductEngage: yearly running purchases per customer and category
- CumCustomerRevenue: yearly customer lifetime value
- CumCustomerSales: yearly customer purchase history array

SnapshotRun is the commit ledger: one row per (table, period) written in the
same transaction as the snapshot rows of that period.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


HistoryJSON = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# REFERENCE TABLES
# =============================================================================

class ProductCategory(Base):
    """Product category lookup"""
    __tablename__ = "product_category"

    category_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category: Mapped[Optional[str]] = mapped_column(Text)


class Region(Base):
    """Customer location/region lookup"""
    __tablename__ = "region"

    region_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    region_name: Mapped[Optional[str]] = mapped_column(Text)


class PaymentMethod(Base):
    """Payment method lookup"""
    __tablename__ = "payment_method"

    method_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_method: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[int] = mapped_column(SmallInteger, default=1)


class Customer(Base):
    """Customer master record"""
    __tablename__ = "customer"

    customer_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_no: Mapped[Optional[str]] = mapped_column(Text)
    first_name: Mapped[Optional[str]] = mapped_column(Text)
    last_name: Mapped[Optional[str]] = mapped_column(Text)
    gender: Mapped[Optional[str]] = mapped_column(String(1))
    email: Mapped[Optional[str]] = mapped_column(Text)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date)
    phone_number: Mapped[Optional[str]] = mapped_column(Text)

    addresses: Mapped[List["CustomerAddress"]] = relationship(back_populates="customer")


class CustomerAddress(Base):
    """
    Customer Address - SCD Type 2

    Each row is one version of a customer's address valid over
    [start_date, end_date). The open version has end_date NULL and
    is_current TRUE; the partial unique index allows only one of those
    per customer.
    """
    __tablename__ = "customer_address"

    version_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("customer.customer_id"), nullable=False
    )
    address: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    customer: Mapped["Customer"] = relationship(back_populates="addresses")

    __table_args__ = (
        Index(
            "uq_customer_address_current",
            "customer_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        Index("ix_customer_address_customer_start", "customer_id", "start_date"),
        CheckConstraint(
            "end_date IS NULL OR end_date > start_date",
            name="ck_customer_address_interval",
        ),
    )


# =============================================================================
# FACT TABLE
# =============================================================================

class SalesDetail(Base):
    """
    Sales transaction fact table (grain: one purchase line).

    Append-only; the cumulative engine only ever reads it filtered by
    invoice_date.
    """
    __tablename__ = "sales_details"

    sales_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("customer.customer_id"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("product_category.category_id"), nullable=False
    )
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_method.method_id"), nullable=False
    )
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    region_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("region.region_id"), nullable=False
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="item_quantity"),
        Index("idx_sales_customer_id", "customer_id"),
        Index("idx_sales_invoice_date", "invoice_date"),
    )


# =============================================================================
# CUMULATIVE TABLES
# =============================================================================

class CumProductSales(Base):
    """Daily cumulative quantity and sales per product category"""
    __tablename__ = "cum_product_sales"

    category_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    product_category: Mapped[Optional[str]] = mapped_column(Text)
    cumulative_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cumulative_sales: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    present_date: Mapped[date] = mapped_column(Date, primary_key=True)


class CumRegionProductSales(Base):
    """Yearly cumulative sales per region and product category"""
    __tablename__ = "cum_region_product_sales"

    region_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    region: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    product_category: Mapped[Optional[str]] = mapped_column(Text)
    cumulative_sales: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    current_year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)


class CumCustomerProductEngage(Base):
    """Yearly cumulative purchase count and sales per customer and category"""
    __tablename__ = "cum_customer_product_engage"

    customer_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    category_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    product_category: Mapped[Optional[str]] = mapped_column(Text)
    cum_purchase_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cumulative_sales: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    current_year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)


class CumCustomerRevenue(Base):
    """Yearly customer lifetime value"""
    __tablename__ = "cum_customer_revenue"

    customer_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    cum_amount_spent: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    current_year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)


class CumCustomerSales(Base):
    """
    Yearly customer purchase history.

    sales_stats holds an ordered array of
    {period, total_discount, total_amount, total_quantity} objects,
    one per year in which the customer bought anything.
    """
    __tablename__ = "cum_customer_sales"

    customer_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    customer_no: Mapped[Optional[str]] = mapped_column(Text)
    sales_stats: Mapped[list] = mapped_column(HistoryJSON, nullable=False, default=list)
    current_year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)


class SnapshotRun(Base):
    """Commit ledger: which periods of which cumulative table are committed"""
    __tablename__ = "snapshot_runs"

    run_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    period_key: Mapped[str] = mapped_column(String(10), nullable=False)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    committed_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("table_name", "period_key", name="uq_snapshot_runs_table_period"),
        Index("ix_snapshot_runs_table", "table_name"),
    )
