"""
middleware.py — Request tracing for the configuration API.

Every response carries X-Request-ID (the caller's, when it sent one) and
X-Process-Time. One log line per request names the matched route template
and the tenant / purpose / config it touched, so a slow or failing resolve
can be traced back to a company's configuration.
"""
import time
import uuid
import logging
from typing import Any, Dict
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("autoerp-api.middleware")

SKIP_LOG_PATHS = {"/health"}

# Path parameters worth lifting into the log line
ENGINE_PATH_PARAMS = ("company_id", "purpose", "config_id", "vehicle_stock_id")


def request_context(request: Request) -> Dict[str, Any]:
    """Engine identifiers of a routed request. Empty before routing."""
    params = request.scope.get("path_params") or {}
    context = {key: str(params[key]) for key in ENGINE_PATH_PARAMS if key in params}
    route = request.scope.get("route")
    if route is not None and getattr(route, "path", None):
        context["http_route"] = route.path
    return context


class RequestTimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        response: Response = await call_next(request)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if request.url.path in SKIP_LOG_PATHS:
            return response

        # The router fills path_params on the shared scope during call_next
        context = request_context(request)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level, "%s %s -> %s (company %s)",
            request.method, context.get("http_route", request.url.path), response.status_code,
            context.get("company_id", "-"),
            extra={
                "http_method": request.method,
                "http_path": request.url.path,
                "http_status": response.status_code,
                "request_id": request_id,
                "duration_ms": duration_ms,
                **context,
            },
        )
        return response
