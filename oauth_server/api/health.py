"""Liveness and readiness probes.

/health always answers 200 while the process is up; the body says which
dependencies are impaired.  /ready answers 503 when the database, which
every OAuth operation needs, cannot be reached.  Redis only backs rate
limiting, so it never makes the instance unready.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response, status
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_database(request: Request) -> str:
    try:
        await request.app.state.database.ping()
    except (SQLAlchemyError, OSError):
        logger.exception("Database health check failed")
        return "degraded"
    return "ok"


async def _check_redis(request: Request) -> str:
    client = request.app.state.redis
    if client is None:
        return "not_configured"
    try:
        await client.ping()
    except (RedisError, OSError):
        logger.warning("Redis health check failed")
        return "degraded"
    return "ok"


@router.get("/health")
async def health(request: Request) -> dict:
    checks = {
        "database": await _check_database(request),
        "redis": await _check_redis(request),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready(request: Request) -> Response:
    if await _check_database(request) != "ok":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
