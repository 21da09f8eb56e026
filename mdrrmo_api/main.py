"""
MDRRMO Inventory & Deployment API - Main Application

SECURITY FEATURES:
- Conditional API docs (disabled in production by default)
- Structured logging without sensitive data
- Uniform error envelope that never carries database error text
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import IntegrityError
import logging

from mdrrmo_api.api.v1.router import api_router
from mdrrmo_api.config import settings
from mdrrmo_api.database import init_db
from mdrrmo_api.exceptions import APIException, create_exception_handlers
from mdrrmo_api.middleware.correlation import CorrelationIdMiddleware, CorrelationLogFilter
from mdrrmo_api.security.rate_limiter import close_login_rate_limiter
# Import all models to register them with SQLAlchemy metadata before init_db()
from mdrrmo_api import models  # noqa: F401
from mdrrmo_api.services.cache_service import close_cache_service, get_cache_service
from mdrrmo_api.tasks.overdue_scheduler import start_overdue_scheduler, stop_overdue_scheduler

VERSION = "1.0.0"

# Configure secure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(CorrelationLogFilter())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting MDRRMO Inventory API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        # SECURITY: Don't log full exception details which may contain credentials
        logger.error(f"Database initialization failed: {type(e).__name__}")
        logger.warning("App starting without database - some features may not work")

    if settings.SCHEDULER_ENABLED:
        start_overdue_scheduler()
    cache = get_cache_service()
    logger.info(f"Cache {'enabled' if cache.is_available else 'disabled'}")
    yield
    logger.info("Shutting down MDRRMO Inventory API...")
    stop_overdue_scheduler()
    await close_cache_service()
    await close_login_rate_limiter()


# SECURITY: Conditionally enable docs based on settings
docs_url = "/docs" if settings.DOCS_ENABLED else None
redoc_url = "/redoc" if settings.DOCS_ENABLED else None

app = FastAPI(
    title="MDRRMO Inventory API",
    description="Equipment inventory, batches, serialized assets and deployments",
    version=VERSION,
    docs_url=docs_url,
    redoc_url=redoc_url,
    lifespan=lifespan,
)

handlers = create_exception_handlers()
app.add_exception_handler(APIException, handlers["api"])
app.add_exception_handler(StarletteHTTPException, handlers["http"])
app.add_exception_handler(RequestValidationError, handlers["validation"])
app.add_exception_handler(IntegrityError, handlers["integrity"])
app.add_exception_handler(Exception, handlers["generic"])

allowed_origins = [
    settings.FRONTEND_URL,
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    response = {
        "name": "MDRRMO Inventory API",
        "version": VERSION,
        "health": "/health",
    }
    if settings.DOCS_ENABLED:
        response["docs"] = "/docs"
    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": get_cache_service().get_stats(),
    }


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mdrrmo_api.main:app",
        host="0.0.0.0",
        port=5001,
        reload=settings.DEBUG,
    )
