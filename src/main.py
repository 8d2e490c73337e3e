import logging
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import REGISTRY, generate_latest

from src.config import Config
from src.config.logging_config import configure_logging
from src.constants import APP_NAME
from src.routes import billing, health, payments
from src.services import prometheus_metrics
from src.services.startup import lifespan
from src.utils.sentry_context import init_sentry

configure_logging()
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
if Config.SENTRY_ENABLED and not Config.IS_TESTING:
    init_sentry(Config.SENTRY_DSN, environment=Config.SENTRY_ENVIRONMENT, release=Config.SENTRY_RELEASE)


def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{APP_NAME} API",
        description="Keeps subscription status and tier consistent across Stripe, Supabase and Clerk",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        # Route templates keep label cardinality bounded; the scope holds them once routing ran
        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")
        prometheus_metrics.http_request_duration.labels(
            method=request.method, endpoint=endpoint
        ).observe(time.time() - start_time)
        prometheus_metrics.record_http_response(request.method, endpoint, response.status_code)
        return response

    @app.get("/metrics", tags=["monitoring"], include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint for monitoring."""
        return Response(generate_latest(REGISTRY), media_type="text/plain; charset=utf-8")

    app.include_router(health.router)
    app.include_router(billing.router)
    app.include_router(payments.router)
    logger.info("  [OK] Routes loaded: health, billing, stripe webhook")

    # ==================== Exception Handlers ====================

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log unexpected exceptions and return a generic 500."""
        logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal error during request_processing"},
        )

    return app


# Export a default app instance for environments that import `app`
app = create_app()

if __name__ == "__main__":
    import uvicorn

    logger.info(" Starting billing sync API server...")
    uvicorn.run("src.main:app", host="0.0.0.0", port=8000, reload=Config.IS_DEVELOPMENT)
