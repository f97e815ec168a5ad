"""
FastAPI Server for the voucher wagering core
Serves the player-facing bet, voucher and safety endpoints
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from config.config import validate_config, API_RATE_LIMIT, CORS_ORIGINS, ENVIRONMENT
from config.logging import setup_logging
from config.sentry import init_sentry
from wagering.database.engine import check_connection, dispose_engine
from wagering.api.router import router as api_router

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()
init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events
    """
    # Startup
    logger.info("Starting Wagering API Server...")

    # NOTE: Database tables managed by Alembic migrations
    # Run: alembic upgrade head
    if not await check_connection():
        logger.error("Database is not reachable, requests will fail until it is")

    yield

    # Shutdown
    logger.info("Shutting down Wagering API Server...")

    await dispose_engine()
    logger.info("Database connections closed")


# Per-IP rate limit on every endpoint
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[API_RATE_LIMIT],
    storage_uri="memory://",
)

app = FastAPI(
    title="Voucher Wagering Core API",
    description="Voucher-backed wagering with win-cap, decay and player safety",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


allowed_origins = [origin.strip() for origin in CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# All API endpoints live under /api
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": "Voucher Wagering Core API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """
    Health check endpoint
    """
    database_ok = await check_connection()
    return {"status": "healthy" if database_ok else "degraded", "database": database_ok}


# Error handler for HTTPException (must be before generic Exception handler)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Return the original status code; dict details are returned as the body
    """
    # Log 4xx as warning, 5xx as error
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

    content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content
    )


# Error handler for unexpected exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unexpected errors
    """
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": "Internal server error",
            "detail": str(exc) if ENVIRONMENT == "development" else "An error occurred",
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Validate configuration
    validate_config()
    logger.info("Configuration validated successfully")

    uvicorn.run(
        "api_server:app",
        host="127.0.0.1",  # Behind a reverse proxy
        port=8003,
        reload=ENVIRONMENT == "development",
        log_level="info",
    )
