"""
Slowly Changing Dimensions Module
"""
from .scd2 import AddressVersioner, SCD2Record, VersionChange, build_versions, reconcile

__all__ = [
    "AddressVersioner",
    "SCD2Record",
    "VersionChange",
    "build_versions",
    "reconcile",
]
