"""
FastAPI application factory.

``create_app()`` is the single composition root for the web-cron service.

Tags:
    sentinel, api, app-factory, composition-root, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sentinel import __version__
from sentinel.api.deps import get_settings
from sentinel.core.logging import configure_logging, get_logger
from sentinel.core.settings import SentinelSettings


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup / shutdown hooks."""
    log = get_logger("sentinel.api")
    log.info("webcron.starting", version=app.version)
    yield
    log.info("webcron.stopping")


def create_app(*, settings: SentinelSettings | None = None) -> FastAPI:
    """Build the web-cron application.

    Parameters
    ----------
    settings : SentinelSettings | None
        Override settings (useful for testing).  When ``None`` the cached
        process settings are used.
    """
    settings = settings or get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service="sentinel-webcron",
        log_file=settings.log_path,
    )

    app = FastAPI(
        title="Sentinel web-cron",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    from sentinel.api.routers import cron

    app.include_router(cron.router)
    return app
