"""
Contact Segments API - Main Application

SECURITY FEATURES:
- Conditional API docs (disabled in production)
- Structured logging without contact data
- Organization scope resolved from verified tokens only
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from contact_segments import __version__
from contact_segments.api.v2.router import api_router
from contact_segments.config import settings
from contact_segments.database import init_db
from contact_segments.exceptions import SegmentationError, create_exception_handlers
from contact_segments.middleware.correlation import CorrelationIdMiddleware
# Import all models to register them with SQLAlchemy metadata before init_db()
from contact_segments.models import Organization, Contact, ContactList, ContactListMembership  # noqa: F401

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Contact Segments API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        # SECURITY: Don't log full exception details which may contain credentials
        logger.error(f"Database initialization failed: {type(e).__name__}")
        raise
    yield
    logger.info("Shutting down Contact Segments API...")


app = FastAPI(
    title="Contact Segments API",
    description="Dynamic contact segments: preview, evaluation and targeting",
    version=__version__,
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    lifespan=lifespan,
)

allowed_origins = [settings.FRONTEND_URL]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

handlers = create_exception_handlers(debug=settings.DEBUG)
app.add_exception_handler(SegmentationError, handlers["segmentation"])
app.add_exception_handler(StarletteHTTPException, handlers["http"])
app.add_exception_handler(RequestValidationError, handlers["validation"])
app.add_exception_handler(Exception, handlers["generic"])

app.include_router(api_router, prefix="/api/v2")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
    }


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "contact_segments.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
