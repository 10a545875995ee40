"""
SchemaCRUD - FastAPI Application
=================================
Schema-driven generic CRUD API: one JSON schema per table, no per-table code.
"""
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from schemacrud.api.v1.router import api_router
from schemacrud.core.config import get_settings
from schemacrud.core.exceptions import CRUDError
from schemacrud.database.session import check_db_connection, dispose_engines
from schemacrud.schemas.common import HealthResponse
from schemacrud.middleware.exception_handler import (
    crud_exception_handler, global_exception_handler, request_logging_middleware,
)
from schemacrud.services.schema_cache import SchemaCache, build_external_cache
from schemacrud.services.schema_service import SchemaService
from schemacrud.services.schema_store import SchemaStore

settings = get_settings()


# ============================================================================
# Logging Configuration
# ============================================================================
def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL, format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}")
    log_dir = os.path.dirname(settings.LOG_FILE)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    logger.add(
        settings.LOG_FILE,
        rotation="10 MB",
        retention="30 days",
        level=settings.LOG_LEVEL,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
    )


# ============================================================================
# Application Lifespan
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if check_db_connection():
        logger.info("✅ Database connection successful")
    else:
        logger.error("❌ Database connection failed!")

    logger.info(f"✅ {settings.APP_NAME} started on {settings.HOST}:{settings.PORT} (schemas: {settings.SCHEMA_PATH})")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")
    dispose_engines()


# ============================================================================
# Create FastAPI App
# ============================================================================
def create_app(schema_service: Optional[SchemaService] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Schema-driven generic CRUD engine",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        redirect_slashes=False,
    )

    # Store debug flag for exception handler
    app.state.debug = settings.DEBUG
    app.state.schema_service = schema_service or SchemaService(
        store=SchemaStore(settings.SCHEMA_PATH),
        cache=SchemaCache(external=build_external_cache()),
    )

    # ========================================================================
    # Middleware
    # ========================================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.middleware("http")(request_logging_middleware)
    app.add_exception_handler(CRUDError, crud_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # ========================================================================
    # Routes
    # ========================================================================
    app.include_router(api_router)

    @app.get("/", tags=["Health"])
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running",
            "docs": "/docs",
        }

    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health_check():
        db_ok = check_db_connection()
        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "connected" if db_ok else "disconnected",
            "version": settings.APP_VERSION,
        }

    return app


configure_logging()
app = create_app()


# ============================================================================
# Entry Point
# ============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "schemacrud.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else 4,
    )
