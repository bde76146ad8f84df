"""Prometheus instrumentation for every HTTP request.

The endpoint label is the matched route template (/authorize,
/.well-known/oauth-protected-resource/{resource_path:path}), not the raw
path, so query strings and arbitrary suffixes cannot blow up label
cardinality.  Unmatched paths are grouped under "unmatched".

The label is resolved after the handler runs: routing records the matched
route in the ASGI scope.  When it is missing, the route table is walked,
descending into included routers, until a leaf route with a template
matches.  The raw path is never used as a label.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import BaseRoute, Match

from oauth_server.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION

_SKIP_PATHS = frozenset({"/metrics"})
UNMATCHED = "unmatched"


def _nested_routes(route: BaseRoute) -> Iterable[BaseRoute] | None:
    routes = getattr(route, "routes", None)
    if routes is None:
        routes = getattr(getattr(route, "router", None), "routes", None)
    return routes


def _match_template(routes: Iterable[BaseRoute], scope: dict[str, Any]) -> str | None:
    for route in routes:
        match, child_scope = route.matches(scope)
        if match != Match.FULL:
            continue
        nested = _nested_routes(route)
        if nested is not None:
            found = _match_template(nested, {**scope, **child_scope})
            if found is not None:
                return found
            continue
        path = getattr(route, "path", None)
        if isinstance(path, str) and path:
            return path
    return None


def _endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if isinstance(path, str) and path:
        return path
    return _match_template(request.app.router.routes, request.scope) or UNMATCHED


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        status_code = "500"  # unless the handler returns
        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        finally:
            ACTIVE_REQUESTS.dec()
            endpoint = _endpoint_label(request)
            REQUEST_COUNT.labels(
                method=request.method, endpoint=endpoint, status_code=status_code
            ).inc()
            REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
                time.monotonic() - start
            )
