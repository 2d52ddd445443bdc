"""
Weekly Test Report Backend - Main FastAPI Application

Upload weekly exam results, get class and student reports with AI analysis.
Version: 1.0
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from weekly_report.config.settings import settings
from weekly_report.cache import init_store, get_registry
from weekly_report.routes import create_report_routes
from weekly_report.services import GeminiConfig, GeminiGateway, ReportOrchestrationService

# Setup logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


async def _create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes for performance."""
    try:
        await db[settings.DATASET_COLLECTION].create_index("user_id", unique=True)
    except Exception as e:
        logger.warning(f"Index creation warning: {e}")
        # Don't fail startup if indexes already exist


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager for startup/shutdown."""
    if app.state.orchestrator is not None:
        # injected (tests): nothing to connect
        yield
        return

    # STARTUP
    logger.info("🚀 Weekly Report Backend Starting Up...")
    client = None

    try:
        # Validate settings
        settings.validate()
        logger.info("✅ Settings validated")

        # Connect to MongoDB
        client = AsyncIOMotorClient(
            settings.MONGODB_URL,
            maxPoolSize=50,
            serverSelectionTimeoutMS=5000
        )

        # Test connection
        await client.server_info()
        db = client[settings.DATABASE_NAME]
        app.state.db = db
        logger.info(f"✅ Connected to MongoDB: {settings.DATABASE_NAME}")

        await _create_indexes(db)
        logger.info("✅ Database indexes created")

        # Initialize dataset store
        init_store(db)
        registry = get_registry()
        logger.info("✅ Dataset store initialized")

        gateway = GeminiGateway(GeminiConfig.from_settings(settings))
        app.state.orchestrator = ReportOrchestrationService(registry, gateway)
        logger.info("✅ Application startup complete")

    except Exception as e:
        logger.error(f"❌ Startup failed: {e}")
        raise

    yield

    # SHUTDOWN
    logger.info("🛑 Shutting down...")
    if client is not None:
        client.close()
        logger.info("✅ Database connection closed")


def create_app(orchestrator: Optional[ReportOrchestrationService] = None) -> FastAPI:
    """Build the application. Passing an orchestrator skips the MongoDB/Gemini startup."""
    app = FastAPI(
        title="Weekly Test Report API",
        description="Class and student reports for weekly exams",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.orchestrator = orchestrator
    app.state.db = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": VERSION,
            "database": "connected" if app.state.db is not None else "disconnected",
            "ready": app.state.orchestrator is not None,
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "app": "Weekly Test Report",
            "version": VERSION,
            "docs": "/docs",
            "health": "/api/health"
        }

    app.include_router(create_report_routes())
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
