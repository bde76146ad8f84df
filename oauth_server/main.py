from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from oauth_server.api.dependencies import protected_resource_metadata_url
from oauth_server.api.health import router as health_router
from oauth_server.api.login import router as login_router
from oauth_server.api.metrics_endpoint import router as metrics_router
from oauth_server.api.oauth import router as oauth_router
from oauth_server.api.resource import router as resource_router
from oauth_server.api.well_known import router as well_known_router
from oauth_server.core.config import SETTINGS, Settings
from oauth_server.core.errors import (
    AlreadyExistsError,
    InvalidClientError,
    InvalidTokenError,
    OAuthError,
)
from oauth_server.core.logging import setup_logging
from oauth_server.db.engine import Database, database_url_for, lifespan_db
from oauth_server.db.redis import create_redis, lifespan_redis
from oauth_server.middleware.metrics import MetricsMiddleware
from oauth_server.middleware.request_context import (
    RequestContextMiddleware,
    install_request_id_filter,
)
from oauth_server.services.cleanup_task import CleanupTask
from oauth_server.services.password_hasher import get_password_hasher
from oauth_server.services.provider import AuthorizationProvider, ProviderConfig
from oauth_server.services.rate_limiter import InMemoryRateLimiter, RedisRateLimiter

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_request_id_filter()

logger = logging.getLogger(__name__)


def _oauth_error_response(settings: Settings, exc: OAuthError) -> JSONResponse:
    headers = {"Cache-Control": "no-store", "Pragma": "no-cache"}
    if isinstance(exc, InvalidTokenError):
        headers["WWW-Authenticate"] = (
            f'Bearer error="{exc.error_code}", '
            f'resource_metadata="{protected_resource_metadata_url(settings)}"'
        )
    elif isinstance(exc, InvalidClientError):
        headers["WWW-Authenticate"] = 'Basic realm="token"'
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response_object(),
        headers=headers,
    )


def create_app(settings: Settings = SETTINGS) -> FastAPI:
    redis_client = create_redis(settings.redis_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        database = Database(database_url_for(settings))
        # Nesting tears down in reverse order: tasks, then Redis, then the DB.
        async with lifespan_db(database):
            async with lifespan_redis(redis_client):
                provider = AuthorizationProvider.from_database(
                    database,
                    get_password_hasher(settings.password_hasher),
                    ProviderConfig.from_settings(settings),
                )
                app.state.database = database
                app.state.provider = provider

                tasks = [
                    CleanupTask(
                        "sessions",
                        provider.cleanup_sessions,
                        settings.session_cleanup_interval,
                    ),
                    CleanupTask("oauth", provider.cleanup, settings.cleanup_interval),
                ]
                for task in tasks:
                    task.start()
                try:
                    yield
                finally:
                    for task in tasks:
                        await task.stop()

    app = FastAPI(
        title="oauth-server",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
    )
    app.state.settings = settings
    app.state.redis = redis_client
    app.state.rate_limiter = (
        RedisRateLimiter(redis_client)
        if redis_client is not None
        else InMemoryRateLimiter()
    )

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(_request: Request, exc: OAuthError) -> JSONResponse:
        return _oauth_error_response(settings, exc)

    @app.exception_handler(AlreadyExistsError)
    async def already_exists_handler(
        _request: Request, exc: AlreadyExistsError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    # MCP-style clients run in the browser on arbitrary origins and read
    # the discovery documents cross-origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # Middleware execution order: last-added runs first (outermost layer).
    # RequestContext (outermost) -> Metrics -> CORS -> route handler
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestContextMiddleware)

    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(well_known_router)
    app.include_router(oauth_router)
    app.include_router(login_router)
    app.include_router(resource_router)

    logger.info(
        "oauth-server started  env=%s log_level=%s port=%d issuer=%s docs=%s",
        settings.app_env,
        settings.log_level,
        settings.port,
        settings.issuer_url,
        "on" if settings.is_dev else "off",
    )
    return app


app = create_app(SETTINGS)
