"""FastAPI application factory.

Main entry point for the studysync Web API.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studysync import __version__
from studysync.core.sync_orchestrator import get_orchestrator
from studysync.web.routes import health_router, sources_router, sync_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    orchestrator = get_orchestrator()
    sources = orchestrator.list_sources()
    logger.info(
        "api_startup",
        sources_found=len(sources),
        db_path=str(orchestrator.config.db_path),
    )
    yield


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        use_lifespan: Run the startup hook (disabled in tests that inject
            their own orchestrator)

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="studysync API",
        description="Subscriptions and sync triggers for remote question banks",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(sources_router)
    app.include_router(sync_router)

    return app


# Default app instance for uvicorn
app = create_app()
