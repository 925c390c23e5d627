"""
API routers, mounted under ``/api/v1`` by ``dining.main.create_app``.
"""

from dining.routes.orders import router as orders_router
from dining.routes.payments import router as payments_router
from dining.routes.websockets import router as websockets_router

__all__ = ["orders_router", "payments_router", "websockets_router"]
