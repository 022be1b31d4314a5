"""
API Routes Module
"""
from .alerts import router as alerts_router
from .health import router as health_router, metrics_router
from .orders import router as orders_router
from .webhooks import router as webhooks_router

__all__ = [
    "alerts_router",
    "health_router",
    "metrics_router",
    "orders_router",
    "webhooks_router",
]
