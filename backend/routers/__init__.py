"""Routers package."""

from .accounts import router as accounts_router
from .analytics import router as analytics_router
from .sync import router as sync_router

__all__ = [
    "accounts_router",
    "analytics_router",
    "sync_router",
]
