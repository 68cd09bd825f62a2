"""
ResetNow Companion - Main FastAPI Application
"""

import logging
from datetime import timedelta
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import settings
from .api import chat_router, register_exception_handlers
from .core.logging_config import setup_logging
from .core.safety import SafetyClassifier
from .core.session_manager import SessionManager
from .generation import create_response_generator
from .middleware import RequestLoggingMiddleware
from .storage import LocalStorage, MessageStore

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    setup_logging(settings)

    storage = LocalStorage(settings.local_storage_path)
    store = MessageStore(storage)
    classifier = SafetyClassifier.from_settings(settings)
    generator = create_response_generator(settings)
    manager = SessionManager(
        store=store,
        generator=generator,
        classifier=classifier,
        staleness_window=timedelta(hours=settings.session_staleness_hours),
    )
    app.state.message_store = store
    app.state.session_manager = manager

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Storage path: {settings.local_storage_path}")
    logger.info(f"Response generator: {generator.name}")
    logger.info(f"Crisis signals loaded: {len(classifier.signals)}")
    logger.info(f"Log level: {settings.log_level.upper()}")
    yield
    # Shutdown
    logger.info(f"Shutting down {settings.app_name}")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Rae, the ResetNow wellbeing companion, with crisis-aware chat sessions",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware (after CORS)
if settings.log_api_requests:
    app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)
app.include_router(chat_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "message": "Hi, I'm Rae. I'm here to listen, but I'm not a doctor or an emergency service."
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    manager = getattr(app.state, "session_manager", None)
    return {
        "status": "healthy" if manager is not None else "starting",
        "storage": settings.storage_type,
        "version": settings.app_version,
        "companion": manager.describe() if manager is not None else None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "companion.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
