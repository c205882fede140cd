"""
Retail Sales Dataset Generator
Generates lookup tables, customers, an address change feed and sales facts
(vectorized) in the CSV layout read by `salesdw seed`.
"""

import argparse
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

import numpy as np
import polars as pl
from faker import Faker

from salesdw.ingestion.transactions import calc_discount_price

fake = Faker()
np.random.seed(42)
Faker.seed(42)

DEFAULT_OUTPUT_DIR = Path(__file__).parent.parent / "data" / "generated"

CATEGORIES = ["Books", "Clothing", "Electronics", "Home & Kitchen", "Sports", "Toys"]
REGIONS = ["East", "North", "South", "West"]
PAYMENT_METHODS = ["Cash", "Credit Card", "Debit Card", "PayPal"]
DISCOUNTS = [0.00, 0.05, 0.10, 0.15, 0.20, 0.25]


# ==========================================
# LOOKUPS
# ==========================================
def generate_lookups(output_dir: Path):
    print("📊 Generating lookup tables...")

    pl.DataFrame({
        "category_id": list(range(1, len(CATEGORIES) + 1)),
        "category": CATEGORIES,
    }).write_csv(output_dir / "product_category.csv")

    pl.DataFrame({
        "region_id": list(range(1, len(REGIONS) + 1)),
        "region_name": REGIONS,
    }).write_csv(output_dir / "region.csv")

    pl.DataFrame({
        "method_id": list(range(1, len(PAYMENT_METHODS) + 1)),
        "payment_method": PAYMENT_METHODS,
        "is_active": [1] * len(PAYMENT_METHODS),
    }).write_csv(output_dir / "payment_method.csv")

    print(f"   ✅ {len(CATEGORIES)} categories, {len(REGIONS)} regions, {len(PAYMENT_METHODS)} payment methods")


# ==========================================
# CUSTOMERS
# ==========================================
def generate_customers(output_dir: Path, n: int = 1000) -> pl.DataFrame:
    print(f"📊 Generating {n:,} customers...")

    df = pl.DataFrame({
        "customer_id": list(range(1, n + 1)),
        "customer_no": [f"CUST-{i:06d}" for i in range(1, n + 1)],
        "first_name": [fake.first_name() for _ in range(n)],
        "last_name": [fake.last_name() for _ in range(n)],
        "gender": np.random.choice(["F", "M"], n),
        "email": [fake.email() for _ in range(n)],
        "date_of_birth": [fake.date_of_birth(minimum_age=18, maximum_age=80) for _ in range(n)],
        "phone_number": [fake.numerify("###-###-####") for _ in range(n)],
    })

    df.write_csv(output_dir / "customer.csv")
    print(f"   ✅ customer.csv: {n:,} rows")
    return df


# ==========================================
# ADDRESS FEED (SCD-2 source)
# ==========================================
def generate_address_feed(output_dir: Path, customer_ids, start: date, days: int, move_rate: float = 0.2) -> pl.DataFrame:
    print("📊 Generating address feed...")

    n = len(customer_ids)
    rows = {
        "customer_id": list(customer_ids),
        "address": [fake.street_address() for _ in range(n)],
        "effective_date": [start] * n,
    }

    movers = np.random.choice(customer_ids, int(n * move_rate), replace=False)
    move_days = np.random.randint(1, days, len(movers))
    rows["customer_id"] += [int(c) for c in movers]
    rows["address"] += [fake.street_address() for _ in movers]
    rows["effective_date"] += [start + timedelta(days=int(d)) for d in move_days]

    df = pl.DataFrame(rows).sort("effective_date", maintain_order=True)
    df.write_csv(output_dir / "customer_address.csv")
    print(f"   ✅ customer_address.csv: {df.height:,} rows ({len(movers):,} moves)")
    return df


# ==========================================
# SALES (VECTORIZED)
# ==========================================
def generate_sales(output_dir: Path, customer_ids, start: date, days: int, n: int = 20000) -> pl.DataFrame:
    print(f"📊 Generating {n:,} sales (vectorized)...")

    unit_price = np.round(np.random.uniform(5, 500, n), 2)
    discount = np.random.choice(DISCOUNTS, n, p=[0.5, 0.15, 0.15, 0.1, 0.05, 0.05])
    offsets = np.random.randint(0, days, n)

    df = pl.DataFrame({
        "sales_id": list(range(1, n + 1)),
        "customer_id": np.random.choice(customer_ids, n),
        "category_id": np.random.randint(1, len(CATEGORIES) + 1, n),
        "unit_price": unit_price,
        "quantity": np.random.randint(1, 6, n),
        "discount": discount,
        "payment_method_id": np.random.randint(1, len(PAYMENT_METHODS) + 1, n),
        "invoice_date": [start + timedelta(days=int(d)) for d in offsets],
        "region_id": np.random.randint(1, len(REGIONS) + 1, n),
    })

    df = df.with_columns(
        pl.Series("unit_price", [Decimal(str(p)) for p in unit_price], dtype=pl.Decimal(10, 2)),
        pl.Series("discount", [Decimal(str(d)) for d in discount], dtype=pl.Decimal(4, 2)),
        pl.Series(
            "amount",
            [calc_discount_price(Decimal(str(p)), Decimal(str(d))) for p, d in zip(unit_price, discount)],
            dtype=pl.Decimal(10, 2),
        ),
    ).sort("invoice_date", maintain_order=True)

    df.write_csv(output_dir / "sales_detail.csv")
    print(f"   ✅ sales_detail.csv: {n:,} rows")
    return df


# ==========================================
# MAIN
# ==========================================
def main():
    parser = argparse.ArgumentParser(description="Generate a synthetic retail sales feed")
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT_DIR, help="Output directory")
    parser.add_argument("--customers", type=int, default=1000, help="Number of customers")
    parser.add_argument("--sales", type=int, default=20000, help="Number of sales rows")
    parser.add_argument("--start", type=date.fromisoformat, default=date(2023, 1, 1), help="First invoice date")
    parser.add_argument("--days", type=int, default=730, help="Number of days covered")
    args = parser.parse_args()

    output_dir = args.output
    output_dir.mkdir(parents=True, exist_ok=True)

    print("=" * 60)
    print("🛒 Retail Sales Dataset Generator")
    print("=" * 60 + "\n")

    generate_lookups(output_dir)
    customers_df = generate_customers(output_dir, args.customers)
    customer_ids = customers_df["customer_id"].to_list()
    generate_address_feed(output_dir, customer_ids, args.start, args.days)
    generate_sales(output_dir, customer_ids, args.start, args.days, args.sales)

    print("\n" + "=" * 60)
    print("✅ Dataset Generation Complete!")
    print("=" * 60)
    print(f"\n📁 Output: {output_dir}\n")

    total = 0
    for f in sorted(output_dir.glob("*.csv")):
        size = f.stat().st_size / 1024 / 1024
        with open(f, "r") as file:
            rows = sum(1 for _ in file) - 1
        total += rows
        print(f"   📄 {f.name}: {rows:,} rows ({size:.2f} MB)")

    print(f"\n📊 Total: {total:,} rows")


if __name__ == "__main__":
    main()
