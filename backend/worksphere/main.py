from __future__ import annotations

from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration

from . import llm_client
from .api.routes import chat as chat_routes
from .api.routes import venues as venue_routes
from .crowdsource import RatingStore
from .health import health_checker
from .logging_config import configure_structlog, get_logger
from .metrics import PrometheusMiddleware, get_metrics
from .pipeline import WorkspacePipeline
from .settings import settings
from .store import build_store
from .utils import (
    add_cors,
    add_rate_limiting,
    add_request_id_tracing,
    add_security_headers,
)

# Configure structured logging (must be done before any logging calls)
configure_structlog(json_logs=not settings.DEBUG)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        release=settings.SENTRY_RELEASE or "worksphere@dev",
        integrations=[FastApiIntegration()],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

logger = get_logger(__name__)

API_PREFIX = "/v1"
GENERIC_ERROR = "Something went wrong. Please try again."


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await llm_client.close_async_client()


app = FastAPI(
    title="WorkSphere API",
    version="0.1.0",
    description="Chat-driven finder for cafes, coworking spaces and libraries to work from",
    lifespan=lifespan,
)

app.state.ratings_store = build_store(settings.REDIS_URL, namespace="worksphere:ratings")
app.state.ratings = RatingStore(app.state.ratings_store)
app.state.pipeline = WorkspacePipeline.from_settings(settings, ratings=app.state.ratings)

add_cors(app)
add_security_headers(app)
add_request_id_tracing(app)
add_rate_limiting(app, build_store(settings.REDIS_URL, namespace="worksphere:ratelimit"))
app.add_middleware(PrometheusMiddleware)

app.include_router(chat_routes.router, prefix=API_PREFIX)
app.include_router(venue_routes.router, prefix=API_PREFIX)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR})


@app.get("/health")
async def health():
    """Return service health including dependency configuration checks."""
    health_status = await health_checker.check_all(app.state.ratings_store)
    status_code = 200 if health_status["status"] == "healthy" else 503
    body = {
        "status": health_status["status"],
        "timestamp": health_status.get("timestamp"),
        "checks": health_status.get("checks", {}),
        "service": "worksphere",
        "version": "0.1.0",
    }
    return JSONResponse(content=body, status_code=status_code)


@app.get("/metrics")
def metrics():
    """Expose Prometheus metrics."""
    try:
        return get_metrics()
    except Exception:
        logger.exception("Metrics export failed")
        raise HTTPException(status_code=503, detail="metrics unavailable")
