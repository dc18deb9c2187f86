"""FastAPI application for fg-predict."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fgpredict.config import get_settings
from fgpredict.database import close_db, init_db
from fgpredict.jobs import UpstreamDataError
from fgpredict.routes.api import router as api_router
from fgpredict.routes.core import router as core_router
from fgpredict.security import limiter
from fgpredict.telemetry.sentry import init_sentry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Only activates if SENTRY_DSN is set
init_sentry()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("[STARTUP] Initializing database...")
    await init_db()
    yield
    logger.info("[SHUTDOWN] Closing database...")
    await close_db()


app = FastAPI(
    title="fg-predict",
    description="Football match outcome prediction pipeline",
    version="1.0.0",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(UpstreamDataError)
async def upstream_data_error_handler(request: Request, exc: UpstreamDataError):
    """Job-level failure; the external scheduler retries."""
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "job": exc.job_name, "retryable": True},
    )


# Include routers
app.include_router(core_router)
app.include_router(api_router)
