"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS,
request monitoring), registers exception handlers and includes all API
routers. It serves as the root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from dictatemed.core.database import init_db
from dictatemed.core.logging_config import get_logger, setup_logging
from dictatemed.core.monitoring import initialize_logfire

from .api.v1 import admin, documents, health, letters, practice, recordings, referrals, style
from .core import constant
from .core.config import settings
from .exception_handlers import setup_exception_handlers
from .middleware import LogfireMiddleware

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Creates the schema for SQLite development databases on startup.
    """
    try:
        logger.info("Starting up DictateMED Server...")
        await init_db()
        logger.info("Database initialized successfully")
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    yield

    logger.info("Shutting down DictateMED Server...")


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    DictateMED Server API

    Backend for turning consultation recordings and clinical documents into
    reviewed specialist letters, with per-subspecialty style learning and
    referral letter ingestion.
    """,
    version="0.1.0",
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

initialize_logfire(app)
setup_exception_handlers(app)

cors = settings.cors
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors.origins,
    allow_credentials=cors.allow_credentials,
    allow_methods=cors.allow_methods,
    allow_headers=cors.allow_headers,
)
app.add_middleware(LogfireMiddleware)


app.include_router(health.router)
app.include_router(letters.router, prefix=f"{constant.API_V1_STR}/letters")
app.include_router(style.router, prefix=f"{constant.API_V1_STR}/style")
app.include_router(referrals.router, prefix=f"{constant.API_V1_STR}/referrals")
app.include_router(recordings.router, prefix=f"{constant.API_V1_STR}/recordings")
app.include_router(documents.router, prefix=f"{constant.API_V1_STR}/documents")
app.include_router(practice.practice_router, prefix=f"{constant.API_V1_STR}/practice")
app.include_router(practice.user_router, prefix=f"{constant.API_V1_STR}/user")
app.include_router(admin.router, prefix=f"{constant.API_V1_STR}/admin")
