"""
Cumulative sales data warehouse.
"""

__version__ = "1.0.0"
