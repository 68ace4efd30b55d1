"""
Health Check Endpoints.

Liveness, database connectivity and version information used for
monitoring and deployment verification.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/health",
    summary="Health Check",
    description="Check the operational status of the API server and its database connection.",
    response_description="Status object.",
    responses={503: {"description": "Database unreachable"}},
)
async def health_check(session: AsyncSession = Depends(get_session)):
    """
    Health check endpoint.

    Runs ``SELECT 1`` against the database; the server reports ``degraded``
    with status 503 when that fails.
    """
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database query failed: {e}")
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "unavailable"})
    return {"status": "ok", "database": "ok"}


@router.get(
    "/version",
    summary="Get Version",
    description="Retrieve version information for the API server.",
    response_description="Version object.",
)
async def version():
    return {"version": "0.1.0", "schema_version": "v1"}
