"""Council Engine - API Routers"""
from .auth import router as auth_router
from .council import router as council_router
from .reports import router as reports_router
from .conflicts import router as conflicts_router
from .reentry import router as reentry_router
from .registration import router as registration_router
from .scheduler import router as scheduler_router

__all__ = [
    "auth_router",
    "council_router",
    "reports_router",
    "conflicts_router",
    "reentry_router",
    "registration_router",
    "scheduler_router",
]
