"""
FastAPI service scaffolding shared by edge services.

Provides request correlation, timing, Prometheus export, a health endpoint
and the single error envelope every failure is rendered through.
"""

from contextlib import asynccontextmanager
from typing import Dict, Any, Optional
import os
import time

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from edge_shared.config import ServiceConfig, get_config
from edge_shared.errors import EdgeCoreException, ValidationError
from edge_shared.logging import (
    clear_context,
    configure_logging,
    get_log_context,
    get_logger,
    set_endpoint,
    set_request_id,
)
from edge_shared.metrics import get_metrics_collector

REQUEST_ID_HEADER = "X-Request-ID"
VERSION = "1.0.0"


class BaseService:
    """Owns the FastAPI app; subclasses add routes and dependency checks."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._started = time.monotonic()

        configure_logging(service_name, self.config.log_level)

        self.app = self._build_app()
        self._install_middleware()
        self._install_error_handlers()
        self._install_service_routes()

    def _build_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            try:
                yield
            finally:
                await self.shutdown()

        docs = self.config.enable_docs and self.config.env == "local"
        return FastAPI(
            title=f"{self.service_name} service",
            version=VERSION,
            docs_url="/docs" if docs else None,
            redoc_url=None,
            lifespan=lifespan,
        )

    async def shutdown(self):
        """Release clients and connections. Override in subclasses."""

    def _install_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
        )

        @self.app.middleware("http")
        async def correlate(request: Request, call_next):
            # Pipeline stages stash headers here; they land on success and error responses alike.
            request.state.response_headers = {}
            request.state.request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
            set_endpoint(f"{request.method} {request.url.path}")
            started = time.perf_counter()
            try:
                response = await call_next(request)
                elapsed = time.perf_counter() - started
                self._decorate(request, response, elapsed)
                self.metrics.record_http_request(request.method, request.url.path, response.status_code, elapsed)
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(elapsed * 1000, 2),
                )
                return response
            finally:
                clear_context()

    @staticmethod
    def _decorate(request: Request, response: Response, elapsed: float):
        for name, value in request.state.response_headers.items():
            response.headers.setdefault(name, value)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        response.headers["X-Response-Time"] = f"{elapsed * 1000:.2f}ms"

    def _install_service_routes(self):
        @self.app.get("/health")
        async def health():
            try:
                dependencies = await self._check_dependencies()
            except Exception as exc:
                self.logger.error("Health check failed", error=str(exc))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(exc)},
                )

            self.metrics.record_health_check("ok")
            healthy = all(state == "ok" for state in dependencies.values())
            return {
                "service": self.service_name,
                "status": "ok" if healthy else "degraded",
                "version": VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
                "uptime_seconds": round(time.monotonic() - self._started, 3),
                "dependencies": dependencies,
            }

        @self.app.get("/metrics")
        async def metrics():
            return Response(content=self.metrics.export(), media_type=CONTENT_TYPE_LATEST)

    def _install_error_handlers(self):
        @self.app.exception_handler(EdgeCoreException)
        async def on_edge_error(request: Request, exc: EdgeCoreException):
            return self._error_response(request, exc)

        @self.app.exception_handler(RequestValidationError)
        async def on_invalid_request(request: Request, exc: RequestValidationError):
            error = ValidationError("Invalid request", details={"errors": jsonable_encoder(exc.errors())})
            return self._error_response(request, error)

        @self.app.exception_handler(Exception)
        async def on_unhandled(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return self._error_response(request, EdgeCoreException("INTERNAL_ERROR", "Internal server error"), audit=False)

    def _error_response(self, request: Request, exc: EdgeCoreException, audit: bool = True) -> JSONResponse:
        """Render the error envelope; every handled failure also gets one audit log entry."""
        request_id = getattr(request.state, "request_id", None)
        if audit:
            context = get_log_context()
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                status_code=exc.status_code,
                request_id=request_id,
                tenant_id=context["tenant_id"],
                user_id=context["user_id"],
                endpoint=context["endpoint"] or f"{request.method} {request.url.path}",
            )
            self.metrics.record_error(exc.code)

        headers: Dict[str, Any] = dict(getattr(request.state, "response_headers", None) or {})
        headers.update(exc.headers)
        if request_id:
            headers[REQUEST_ID_HEADER] = request_id
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(request_id).to_dict(),
            headers=headers,
        )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Map of dependency name to ``"ok"`` or a failure state. Override in subclasses."""
        return {}

    def run(self):
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
