import logging
from time import perf_counter

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_COUNT = Counter(
    "identity_http_requests_total",
    "HTTP requests handled",
    ["method", "route", "status"],
)
REQUEST_LATENCY = Histogram(
    "identity_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "route"],
)
INVARIANT_VIOLATIONS = Counter(
    "identity_invariant_violations_total",
    "Note-level overrides rejected for being less private than the baseline",
)
REDACTION_FALLBACKS = Counter(
    "identity_redaction_fallbacks_total",
    "References degraded to the most private representation",
    ["reason"],
)
STORAGE_ERRORS = Counter(
    "identity_storage_errors_total",
    "Failed identity writes",
    ["operation"],
)


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or "unmatched"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            elapsed = perf_counter() - start
            route = _route_label(request)
            REQUEST_COUNT.labels(request.method, route, str(status)).inc()
            REQUEST_LATENCY.labels(request.method, route).observe(elapsed)
            logger.debug(
                "%s %s -> %s in %.3fs", request.method, route, status, elapsed
            )
