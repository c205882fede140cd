"""
API Routes Module
"""
from .health import router as health_router
from .snapshots import router as snapshots_router
from .customers import router as customers_router

__all__ = [
    "health_router",
    "snapshots_router",
    "customers_router",
]
