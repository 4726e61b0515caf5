"""Prometheus metrics for the gateway."""
from __future__ import annotations

import time
from typing import Optional

from fastapi import FastAPI, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


UNMATCHED_ROUTE = "<unmatched>"


class Observability:
    """Record HTTP and completion metrics and expose them on ``/metrics``."""

    def __init__(
        self,
        app: FastAPI,
        service_name: str,
        *,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self.app = app
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._request_counter: Counter
        self._request_duration: Histogram
        self._completion_counter: Counter

        self._install_metrics()
        self.app.middleware("http")(self._observe_request)

        if not any(getattr(route, "path", None) == "/metrics" for route in self.app.routes):
            self.app.add_api_route(
                "/metrics",
                self._metrics_endpoint,
                methods=["GET"],
                include_in_schema=False,
            )

    def record_completion(self, outcome: str) -> None:
        """Count one completion attempt by outcome (``answer``, ``fallback`` or a failure kind)."""

        self._completion_counter.labels(service=self.service_name, outcome=outcome).inc()

    def reset_metrics(self, registry: Optional[CollectorRegistry] = None) -> None:
        """Reset the Prometheus registry, useful for isolating tests."""

        self.registry = registry or CollectorRegistry()
        self._install_metrics()

    def _install_metrics(self) -> None:
        self._request_counter = Counter(
            "askllm_http_requests_total",
            "Total number of HTTP requests",
            labelnames=["service", "method", "route", "status_code"],
            registry=self.registry,
        )
        self._request_duration = Histogram(
            "askllm_http_request_duration_seconds",
            "Latency of HTTP requests",
            labelnames=["service", "method", "route"],
            registry=self.registry,
        )
        self._completion_counter = Counter(
            "askllm_completions_total",
            "Completion attempts grouped by outcome",
            labelnames=["service", "outcome"],
            registry=self.registry,
        )

    async def _observe_request(self, request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # The router fills scope["route"] during call_next.
            labels = {
                "service": self.service_name,
                "method": request.method,
                "route": self._resolve_route(request),
            }
            self._request_counter.labels(**labels, status_code=str(status_code)).inc()
            self._request_duration.labels(**labels).observe(time.perf_counter() - start)

    def _metrics_endpoint(self) -> Response:
        payload = generate_latest(self.registry)
        return Response(payload, media_type=CONTENT_TYPE_LATEST)

    @staticmethod
    def _resolve_route(request: Request) -> str:
        route = request.scope.get("route")
        if route and getattr(route, "path", None):
            return route.path  # type: ignore[return-value]
        return UNMATCHED_ROUTE


__all__ = ["Observability"]
