"""
Data Ingestion Module
"""
from .transactions import SalesTransaction, calc_discount_price, insert_transaction
from .loaders import bulk_insert, seed_from_directory

__all__ = [
    "SalesTransaction",
    "calc_discount_price",
    "insert_transaction",
    "bulk_insert",
    "seed_from_directory",
]
