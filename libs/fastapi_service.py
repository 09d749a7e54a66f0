"""
FastAPI Service Factory
Builds the Zicom Safety service apps: CORS, request logging, a JSON 500 for
unhandled errors, /health and Prometheus metrics. Services only add routes
and their own business counters.
"""

import logging
import time
from typing import List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from libs.config import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for a service process."""
    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )


def route_path(request: Request) -> str:
    """Route template (e.g. /v1/emergency/{record_id}/recording), else the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class ServiceMetrics:
    """Per-service Prometheus registry with the shared HTTP metrics."""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.registry = CollectorRegistry()

        self.request_count = Counter(
            "service_requests_total",
            "Total HTTP requests handled by the service",
            ["service", "method", "path", "http_status"],
            registry=self.registry,
        )
        self.request_latency = Histogram(
            "service_request_duration_seconds",
            "Request latency in seconds",
            ["service", "path"],
            registry=self.registry,
        )
        self.business_metrics: List[Counter] = []

    def record_request(self, method: str, path: str, status_code: int, duration: float):
        self.request_count.labels(
            service=self.service_name, method=method, path=path, http_status=status_code
        ).inc()
        self.request_latency.labels(service=self.service_name, path=path).observe(duration)

    def render(self) -> bytes:
        return generate_latest(self.registry)


class ServiceAppConfig:
    """What differs between the service apps."""

    def __init__(
        self,
        title: str,
        description: str,
        service_name: str,
        version: str = "1.0.0",
        allow_origins: Optional[List[str]] = None,
        enable_metrics: bool = True,
    ):
        self.title = title
        self.description = description
        self.service_name = service_name
        self.version = version
        self.allow_origins = allow_origins or ["*"]
        self.enable_metrics = enable_metrics


class FastAPIServiceFactory:
    """
    Creates a configured FastAPI app for one service.

    Usage:
        factory = FastAPIServiceFactory(ServiceAppConfig(...))
        app = factory.create_app()
        SIGNUPS = factory.add_business_metric("user_signups_total", "...")
    """

    def __init__(self, config: ServiceAppConfig):
        self.config = config
        self.metrics = ServiceMetrics(config.service_name) if config.enable_metrics else None

    def create_app(self) -> FastAPI:
        app = FastAPI(
            title=self.config.title,
            description=self.config.description,
            version=self.config.version,
        )

        # Web clients call the APIs straight from the browser
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._add_request_middleware(app)
        self._add_error_handler(app)
        self._add_health_endpoints(app)
        if self.metrics:
            self._add_metrics_endpoint(app)

        app.state.metrics = self.metrics
        app.state.service_name = self.config.service_name
        return app

    def _add_request_middleware(self, app: FastAPI):
        metrics = self.metrics
        service_logger = logging.getLogger(self.config.service_name)

        @app.middleware("http")
        async def observe_request(request: Request, call_next):
            start = time.time()
            response = await call_next(request)
            duration = time.time() - start
            path = route_path(request)

            if metrics:
                metrics.record_request(request.method, path, response.status_code, duration)
            if response.status_code >= 500:
                service_logger.warning(
                    "%s %s -> %s (%.3fs)", request.method, path, response.status_code, duration
                )
            else:
                service_logger.debug(
                    "%s %s -> %s (%.3fs)", request.method, path, response.status_code, duration
                )
            return response

    def _add_error_handler(self, app: FastAPI):
        service_name = self.config.service_name

        @app.exception_handler(Exception)
        async def unhandled_error(request: Request, exc: Exception):
            logger.exception("Unhandled error in %s on %s %s", service_name, request.method, request.url.path)
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    def _add_health_endpoints(self, app: FastAPI):
        service_name = self.config.service_name

        @app.get("/")
        async def root():
            return {"service": service_name, "status": "running"}

        @app.get("/health")
        async def health_check():
            return {"status": "ok", "service": service_name}

    def _add_metrics_endpoint(self, app: FastAPI):
        metrics = self.metrics

        @app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=metrics.render(), media_type=CONTENT_TYPE_LATEST)

    def add_business_metric(self, name: str, description: str, labels: List[str] = None) -> Counter:
        """
        Register a service-specific counter on the service registry.

        Args:
            name: Metric name
            description: Metric description
            labels: Optional label names

        Returns:
            The Counter, ready to `.inc()` / `.labels(...).inc()`
        """
        if not self.metrics:
            raise ValueError("Metrics not enabled for this service")

        counter = Counter(name, description, labels or [], registry=self.metrics.registry)
        self.metrics.business_metrics.append(counter)
        return counter
