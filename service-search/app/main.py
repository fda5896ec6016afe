"""Search service main application."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from .api.routes import router as api_router
from .hybrid.search_manager import SERVICE_NAME, SearchManager
from libs.common.config import SearchConfig
from libs.common.logging import configure_logging
from libs.common.metrics import get_metrics_collector
from libs.common.tracing import configure_tracing

logger = structlog.get_logger("search_service")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    config: SearchConfig = app.state.config

    logger.info("Starting search service", backend=config.ml_search_backend)

    if getattr(app.state, "search_manager", None) is None:
        app.state.search_manager = SearchManager(config, metrics_collector=app.state.metrics_collector)
    await app.state.search_manager.initialize()

    logger.info("Search service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down search service")
    await app.state.search_manager.cleanup()
    logger.info("Search service shutdown complete")


def create_app(
    config: Optional[SearchConfig] = None,
    search_manager: Optional[SearchManager] = None
) -> FastAPI:
    """Build the FastAPI application.

    Parameters
    - config: Service settings; read from the environment when omitted
    - search_manager: Pre-built manager (tests inject in-memory collaborators)
    """
    config = config or SearchConfig()
    configure_logging(SERVICE_NAME, config.ml_log_level, config.ml_log_format)

    app = FastAPI(
        title="Search Service",
        description="Hybrid text and vector search service",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.config = config
    app.state.search_manager = search_manager
    app.state.metrics_collector = (
        search_manager.metrics if search_manager is not None else get_metrics_collector(SERVICE_NAME)
    )

    # Initialize tracing
    if config.ml_tracing_enabled:
        tracer = configure_tracing(SERVICE_NAME, config.ml_otel_exporter, config.ml_env, app=app)
        if tracer:
            logger.info("OpenTelemetry tracing enabled", exporter=config.ml_otel_exporter)
        else:
            logger.warning("Tracing initialization failed")
    else:
        tracer = None
        logger.info("OpenTelemetry tracing disabled via configuration")
    app.state.tracer = tracer

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to responses."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error"}
            )

        request.app.state.metrics_collector.record_http_request(
            method=request.method,
            endpoint=request.url.path,
            status=status_code,
            duration=time.time() - start_time
        )

        return response

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        manager = request.app.state.search_manager
        try:
            search_health = manager is not None and await manager.health_check()
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "service": SERVICE_NAME, "error": str(e)}
            )

        if search_health:
            return {"status": "healthy", "service": SERVICE_NAME}
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME}
        )

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        metrics_data = request.app.state.metrics_collector.get_metrics()
        return Response(content=metrics_data, media_type="text/plain")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "hybrid_search": "/api/v1/search/hybrid",
                "text_search": "/api/v1/search/text",
                "vector_search": "/api/v1/search/vector",
                "index": "/api/v1/index"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=app.state.config.ml_search_port,
        log_level="info"
    )
