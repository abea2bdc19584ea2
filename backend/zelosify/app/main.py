"""FastAPI application factory for the Zelosify backend."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ..db.base import dispose_engine, init_engine
from .config import settings
from .errors import register_exception_handlers
from .logging import bind_contextvars, clear_contextvars, setup_logging
from .routes import auth, system, vendor

setup_logging()


@asynccontextmanager
async def _lifespan(app: FastAPI):  # pragma: no cover - exercised via deployment
    """Initialise and tear down shared application resources."""

    init_engine(settings.database_url, echo=settings.sqlalchemy_echo)
    try:
        yield
    finally:
        await dispose_engine()


def create_app(*, api_prefix: str = "/api/v1") -> FastAPI:
    """Create and configure the FastAPI application instance.

    The health check stays at the root; every other router is mounted under
    ``api_prefix``.
    """

    app = FastAPI(title="Zelosify Backend", version="1.0", lifespan=_lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Cookie"],
        expose_headers=["set-cookie"],
    )

    @app.middleware("http")
    async def _request_context(request: Request, call_next):
        clear_contextvars()
        bind_contextvars(method=request.method, path=request.url.path)
        return await call_next(request)

    register_exception_handlers(app)

    prefix = api_prefix.rstrip("/")
    if prefix and not prefix.startswith("/"):
        prefix = f"/{prefix}"

    app.include_router(system.router)
    app.include_router(auth.router, prefix=prefix)
    app.include_router(vendor.router, prefix=prefix)

    return app


app = create_app()
