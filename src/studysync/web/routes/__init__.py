"""Route handlers for the Web API."""

from studysync.web.routes.health import router as health_router
from studysync.web.routes.sources import router as sources_router
from studysync.web.routes.sync import router as sync_router

__all__ = [
    "health_router",
    "sources_router",
    "sync_router",
]
