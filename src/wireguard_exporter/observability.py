from __future__ import annotations

import logging
import time
import uuid

from fastapi import FastAPI, Request
from prometheus_client import CollectorRegistry, Counter, Histogram

# Route label for requests no route matched. Raw paths are never used as label values.
UNMATCHED_ROUTE = "unmatched"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if isinstance(path, str) and path:
        return path
    return UNMATCHED_ROUTE


def install_http_observability(app: FastAPI, *, registry: CollectorRegistry) -> None:
    logger = logging.getLogger("wireguard_exporter.http")
    requests_total = Counter(
        "wireguard_exporter_http_requests_total",
        "HTTP requests processed by the exporter",
        labelnames=["method", "route", "status"],
        registry=registry,
    )
    request_duration = Histogram(
        "wireguard_exporter_http_request_duration_seconds",
        "HTTP request duration in seconds",
        labelnames=["method", "route"],
        buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
        registry=registry,
    )

    def _observe(request: Request, status_code: int, started: float) -> tuple[str, float]:
        elapsed = max(0.0, time.perf_counter() - started)
        route = _route_label(request)
        requests_total.labels(request.method.upper(), route, str(status_code)).inc()
        request_duration.labels(request.method.upper(), route).observe(elapsed)
        return route, elapsed

    @app.middleware("http")
    async def _exporter_http_observer(request: Request, call_next):  # noqa: ANN001, ANN202
        request_id = (request.headers.get("x-request-id") or "").strip() or uuid.uuid4().hex[:16]
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            route, elapsed = _observe(request, 500, started)
            logger.exception(
                "request_failed method=%s route=%s duration_ms=%.2f request_id=%s",
                request.method,
                route,
                elapsed * 1000,
                request_id,
            )
            raise

        route, elapsed = _observe(request, response.status_code, started)
        response.headers.setdefault("x-request-id", request_id)
        # Successful requests log at DEBUG, errors at INFO.
        log = logger.debug if response.status_code < 400 else logger.info
        log(
            "request method=%s route=%s status=%s duration_ms=%.2f request_id=%s",
            request.method,
            route,
            response.status_code,
            elapsed * 1000,
            request_id,
        )
        return response
