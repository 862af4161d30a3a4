"""API routes."""

from wacrm.api.routes.admin import router as admin_router
from wacrm.api.routes.health import router as health_router
from wacrm.api.routes.webhooks import router as webhooks_router

__all__ = ["admin_router", "health_router", "webhooks_router"]
