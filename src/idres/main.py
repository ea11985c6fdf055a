"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from idres.config import get_settings
from idres.database import close_db, create_schema, init_db
from idres.dependencies import close_store, init_store
from idres.health.router import router as health_router
from idres.identity.router import router as identity_router
from idres.middleware import setup_middleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    if settings.store_backend == "sql":
        await init_db(settings.database_url)
        if settings.database_url.startswith("sqlite"):
            # No migrations for throwaway SQLite databases
            await create_schema()
    store = init_store(settings)
    logger.info("identity_store_ready", backend=settings.store_backend, store=type(store).__name__)

    yield

    close_store()
    if settings.store_backend == "sql":
        await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Identity Reconciliation API",
        description="Resolves wallet addresses and usernames to canonical accounts and issues session tokens",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(identity_router)

    return app


app = create_app()
