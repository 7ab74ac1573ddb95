"""
API v1 package initialization.

This module collects the v1 routers of the inventory and order lifecycle
service.
"""

from src.api.v1.demos import router as demos_router
from src.api.v1.items import router as items_router
from src.api.v1.orders import router as orders_router

__all__ = ["demos_router", "items_router", "orders_router"]
