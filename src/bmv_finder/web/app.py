"""FastAPI application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from bmv_finder.config import Settings
from bmv_finder.db import SaleStore, initialize_schema, open_store
from bmv_finder.logging import configure_logging, get_logger

logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


def create_app(settings: Settings | None = None, *, store: SaleStore | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings. Loaded from env if not provided.
        store: Store to serve from. Built from settings if not provided.
    """
    if settings is None:
        settings = Settings()

    configure_logging(json_output=settings.is_production)

    app_store = store if store is not None else open_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await initialize_schema(app_store)
        app.state.store = app_store
        app.state.settings = settings
        logger.info("web_server_started", store=app_store.name, environment=settings.environment)

        yield

        await app_store.close()
        logger.info("web_server_stopped")

    app = FastAPI(title="BMV Finder", lifespan=lifespan)
    app.add_middleware(SecurityHeadersMiddleware)

    from bmv_finder.web.routes import router

    app.include_router(router)

    return app
