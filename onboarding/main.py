"""
Main FastAPI application entry point.
Configures the application, middleware, and includes routers.
"""
from dotenv import load_dotenv

# Load environment variables from .env file first
load_dotenv()

from datetime import datetime, timedelta, timezone
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from .registration.router import router as registration_router
from .database import engine, SessionLocal, Base
from .config import settings
# Import all models here for creating tables
from .core import audit_models, storage_models  # noqa: F401
from .registration import models  # noqa: F401
from .core.storage import purge_stale_state
from .exceptions import register_exception_handlers
from .core.middleware import setup_middlewares

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

# Create database tables if they don't exist
Base.metadata.create_all(bind=engine)

# Drop state left behind by abandoned registrations
logger.info("Starting Doctor Onboarding API...")
db = SessionLocal()
try:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=settings.stale_record_retention_hours)
    purge_stale_state(db, cutoff)
finally:
    db.close()

# Create FastAPI application
app = FastAPI(
    title="Doctor Onboarding API",
    description="Multi-step doctor registration with email, phone and license verification",
    version="1.0.0"
)

# Register exception handlers
register_exception_handlers(app)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-Request-ID"],
)

# Setup custom middleware
setup_middlewares(app)

# Include routers
app.include_router(registration_router)

# Root endpoint
@app.get("/")
def root():
    """
    Root endpoint for API health check.

    Returns:
        dict: Simple welcome message
    """
    return {"message": "Welcome to Doctor Onboarding API", "version": app.version}

# Health check endpoint
@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns:
        dict: Health status information
    """
    return {"status": "healthy", "database": "connected"}
