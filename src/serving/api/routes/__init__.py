"""
API Routes Module
"""
from .health import router as health_router
from .analytics import router as analytics_router
from .customers import router as customers_router
from .orders import router as orders_router
from .bulk import router as bulk_router

__all__ = [
    "health_router",
    "analytics_router",
    "customers_router",
    "orders_router",
    "bulk_router",
]
