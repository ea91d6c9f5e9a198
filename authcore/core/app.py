"""FastAPI application factory for the authcore token service."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.api.errors import register_exception_handlers
from authcore.api.routes_admin import router as admin_router
from authcore.api.routes_auth import router as auth_router
from authcore.api.routes_jwks import router as jwks_router
from authcore.auth.scheduler import Sleep
from authcore.core.clock import Clock, utc_now
from authcore.core.container import build_container
from authcore.core.logging import configure_logging, get_logger, set_correlation_id
from authcore.core.settings import ServiceSettings
from authcore.db.engine import dispose_engine, get_session_factory

logger = get_logger(__name__)


def create_app(
    settings: ServiceSettings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Clock = utc_now,
    sleep: Sleep = asyncio.sleep,
) -> FastAPI:
    """Build and configure the FastAPI application.

    The service graph is wired here rather than in the lifespan so that
    transports that skip lifespan events (test clients) still get it; the
    lifespan only runs the maintenance scheduler and releases resources.
    """
    settings = settings or ServiceSettings()
    configure_logging(settings.log)
    owns_engine = session_factory is None
    factory = session_factory or get_session_factory()
    container = build_container(factory, settings, clock=clock, sleep=sleep)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if settings.maintenance.enabled:
            container.scheduler.start()
        try:
            yield
        finally:
            await container.aclose()
            if owns_engine:
                await dispose_engine()

    app = FastAPI(
        title="authcore token service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    origins = settings.admin.get_cors_origin_list()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
            expose_headers=["X-Request-ID"],
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(jwks_router)

    return app
