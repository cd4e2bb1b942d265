from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response

from authlab.api.error_handling import register_exception_handlers
from authlab.api.routes import create_chaos_router, create_router
from authlab.api.schemas import HealthResponse, InfoResponse
from authlab.logging import get_logger, set_correlation_id
from authlab.security.middleware import security_filter_chain
from authlab.service.runtime import Runtime, get_runtime

logger = get_logger(__name__)

APP_NAME = "authlab"
__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime: Runtime = app.state.runtime
    logger.info(
        "app_started",
        version=__version__,
        build=runtime.settings.build_sha,
        chaos_enabled=runtime.settings.enable_chaos,
    )
    yield
    logger.info("app_stopped")


async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    # Bearer-authenticated API responses must not be cached by intermediaries
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


async def add_correlation_id(request: Request, call_next):
    """Bind the caller's ``X-Request-ID`` (or a new UUID) to every log line."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


def _register_actuator(app: FastAPI, runtime: Runtime) -> None:
    @app.get("/actuator/health", response_model=HealthResponse, tags=["actuator"])
    async def health() -> HealthResponse:
        return HealthResponse()

    @app.get("/actuator/info", response_model=InfoResponse, tags=["actuator"])
    async def info() -> InfoResponse:
        return InfoResponse(
            app=APP_NAME, version=__version__, build=runtime.settings.build_sha
        )

    @app.get("/actuator/prometheus", response_class=Response, tags=["actuator"])
    async def prometheus() -> Response:
        payload, content_type = runtime.metrics.exposition()
        return Response(content=payload, media_type=content_type)


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the resource server around ``runtime`` (the process runtime by default)."""
    runtime = runtime or get_runtime()
    app = FastAPI(title=APP_NAME, version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    # Registered innermost first: the correlation id wraps every response,
    # including 401/403 bodies produced by the security chain.
    app.middleware("http")(security_filter_chain)
    app.middleware("http")(add_security_headers)
    app.middleware("http")(add_correlation_id)

    register_exception_handlers(app)
    _register_actuator(app, runtime)
    app.include_router(create_router(runtime))
    if runtime.settings.enable_chaos:
        logger.warning("chaos_routes_enabled")
        app.include_router(create_chaos_router(runtime))
    return app


app = create_app()
