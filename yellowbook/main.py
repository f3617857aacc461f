"""
Yellowbook Directory API

FastAPI application entry point for the business directory, its admin
surface and the assistant search.
"""

from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from yellowbook.cache.redis_cache import get_cache_client
from yellowbook.config import settings
from yellowbook.db.session import dispose_engine
from yellowbook.jobs.queue import EmbeddingJobQueue
from yellowbook.observability import configure_logging, configure_sentry
from yellowbook.search.embeddings import get_embedding_client

logger = structlog.get_logger(__name__)


# =============================================================================
# Application Lifespan
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the process-wide service handles on startup and release them on
    shutdown.
    """
    # Startup
    configure_logging()
    configure_sentry()

    app.state.cache_client = get_cache_client()
    app.state.embedding_client = get_embedding_client()
    app.state.job_queue = EmbeddingJobQueue()

    logger.info(
        "application_startup",
        app_name="Yellowbook API",
        debug=settings.DEBUG,
        cache_enabled=app.state.cache_client is not None,
        demo_mode=app.state.embedding_client is None,
    )

    yield

    # Shutdown
    if app.state.cache_client is not None:
        app.state.cache_client.close()
    if app.state.embedding_client is not None:
        app.state.embedding_client.close()
    dispose_engine()
    logger.info("application_shutdown")


# =============================================================================
# FastAPI Application
# =============================================================================
app = FastAPI(
    title="Yellowbook API",
    description="Business directory with admin tools and semantic search",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    return response


# =============================================================================
# Error Responses
# =============================================================================
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input → 400 with a structured issue list."""
    details = [
        {
            "path": [part for part in err.get("loc", ()) if part != "body"],
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    logger.info("request_validation_failed", path=request.url.path, issue_count=len(details))
    return JSONResponse(status_code=400, content={"error": "Invalid input", "details": details})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# =============================================================================
# Root and Health Check Endpoints
# =============================================================================
@app.get("/", tags=["Health"])
async def root() -> dict:
    return {"message": "Yellowbook API"}


@app.get("/health", tags=["Health"])
async def health_check() -> JSONResponse:
    """
    Health check endpoint for load balancers and monitoring.

    Returns:
        JSON response with status "ok"
    """
    return JSONResponse(
        content={"status": "ok"},
        status_code=200,
    )


# =============================================================================
# API Routers
# =============================================================================
from yellowbook.api.routes.admin import router as admin_router  # noqa: E402
from yellowbook.api.routes.ai_search import router as ai_search_router  # noqa: E402
from yellowbook.api.routes.listings import router as listings_router  # noqa: E402

app.include_router(listings_router)
app.include_router(admin_router)
app.include_router(ai_search_router)


def run_api() -> None:
    """Console entry point: serve the API with uvicorn on HOST:PORT."""
    uvicorn.run("yellowbook.main:app", host=settings.HOST, port=settings.PORT)
