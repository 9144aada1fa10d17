import sys
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi.errors import RateLimitExceeded
from kobo_insights.api.routes import router
from kobo_insights.api.charts import router as charts_router
from kobo_insights.api.kobo import router as kobo_router
from kobo_insights.api.metrics import router as metrics_router
from kobo_insights.api.tokens import router as tokens_router
from kobo_insights.core.config import get_settings
from kobo_insights.core.errors import ErrorCodes
from kobo_insights.core.logging import configure_logging
from kobo_insights.core.middleware import CorrelationIDMiddleware, TimeoutMiddleware, error_json
from kobo_insights.core.rate_limit import limiter
from kobo_insights.services.autosync import get_auto_sync

# Load environment variables
load_dotenv()

# Load and validate configuration
try:
    settings = get_settings()
except Exception as e:
    logging.basicConfig(level=logging.ERROR)
    logging.getLogger(__name__).error(f"Failed to load configuration: {e}")
    sys.exit(1)

configure_logging(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the auto-sync scheduler for as long as the app serves requests."""
    scheduler = get_auto_sync()
    if get_settings().auto_sync_scheduler_enabled:
        scheduler.start()
    yield
    scheduler.stop()


app = FastAPI(
    title="Kobo Insights API",
    description="Chart suggestions and data quality reports for KoboToolbox survey projects",
    version="1.0.0",
    lifespan=lifespan,
)

# slowapi looks the limiter up on app state
app.state.limiter = limiter


def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded with structured error response."""
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    return error_json(
        429,
        ErrorCodes.RATE_LIMIT_EXCEEDED,
        correlation_id,
        **{"Retry-After": str(getattr(exc, 'retry_after', None) or 60)}
    )


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# Middleware runs in reverse order of registration
app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID", "Content-Disposition"]
)
app.add_middleware(CorrelationIDMiddleware)

logger.info(f"CORS allowed origins: {settings.allowed_origins_list}")

app.include_router(router, prefix="/api")
app.include_router(charts_router, prefix="/api")
app.include_router(kobo_router, prefix="/api")
app.include_router(metrics_router, prefix="/api")
app.include_router(tokens_router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Kobo Insights API is running"}

logger.info("Application started successfully")
