"""API routers."""

from . import auth_router, queue_router, status_router

__all__ = ["auth_router", "queue_router", "status_router"]
