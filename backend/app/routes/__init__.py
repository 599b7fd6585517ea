"""API routes."""

from .admin import router as admin_router
from .jobs import router as jobs_router
from .maintenance import router as maintenance_router

__all__ = ["admin_router", "jobs_router", "maintenance_router"]
