"""
HTTP middleware: per-route call metrics and a per-request deadline.
"""
import asyncio
import logging
import time
from threading import Lock
from typing import Any, Dict, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Match

logger = logging.getLogger(__name__)

UNMATCHED_PATH = "unmatched"


class ApiMetrics:
    """Call count and latency per (status code, method, route path)"""

    def __init__(self):
        self._lock = Lock()
        self._calls: Dict[Tuple[int, str, str], Dict[str, float]] = {}

    def record(self, code: int, method: str, path: str, elapsed_seconds: float):
        key = (int(code), method, path)
        with self._lock:
            entry = self._calls.setdefault(key, {"count": 0, "total_seconds": 0.0, "max_seconds": 0.0})
            entry["count"] += 1
            entry["total_seconds"] += elapsed_seconds
            entry["max_seconds"] = max(entry["max_seconds"], elapsed_seconds)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            calls = [
                {
                    "code": code,
                    "method": method,
                    "path": path,
                    "count": int(entry["count"]),
                    "avg_seconds": entry["total_seconds"] / entry["count"],
                    "max_seconds": entry["max_seconds"],
                }
                for (code, method, path), entry in sorted(self._calls.items())
            ]
        return {"calls": calls, "total": sum(call["count"] for call in calls)}

    def reset(self):
        with self._lock:
            self._calls.clear()


def route_path(request: Request) -> str:
    """Route template such as ``/api/v1/alerts/{slug}``, so ids do not explode the key space."""
    app = request.scope.get("app")
    if app is None:
        return UNMATCHED_PATH
    for route in app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return route.path
    return UNMATCHED_PATH


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records every call into an ApiMetrics instance."""

    def __init__(self, app, metrics: ApiMetrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        path = route_path(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        logger.debug(f"Called code:{response.status_code}, method:{request.method}, path:{path}, elapsed:{elapsed:.4f}s")
        self.metrics.record(response.status_code, request.method, path, elapsed)
        return response


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Answers 504 when a request runs past its deadline."""

    def __init__(self, app, timeout_seconds: float):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"{request.method} {request.url.path} exceeded {self.timeout_seconds}s")
            return JSONResponse(status_code=504, content={"detail": "request timeout"})
