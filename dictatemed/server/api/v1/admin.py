"""
Admin Endpoints.

De-identified style analytics pooled across clinicians. Every route here
requires the admin role.
"""

from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.database.base import utc_now
from dictatemed.core.errors import ValidationError
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import Subspecialty
from dictatemed.core.models.io.style import (
    AggregationRequest,
    AggregationResponse,
    AnalyticsThresholds,
    StyleAnalyticsList,
    StyleAnalyticsSummaryResponse,
)
from dictatemed.domains.style import analytics
from dictatemed.server.services.deps import AdminUserDep

logger = get_logger(__name__)

router = APIRouter(tags=["admin"])

THRESHOLDS = AnalyticsThresholds(
    min_clinicians_required=analytics.MIN_CLINICIANS_FOR_AGGREGATION,
    min_letters_required=analytics.MIN_LETTERS_FOR_AGGREGATION,
)


@router.get(
    "/style-analytics",
    response_model=Union[StyleAnalyticsList, StyleAnalyticsSummaryResponse],
    summary="Get Style Analytics",
    description=(
        "Aggregates for one subspecialty, newest first, or the latest aggregate for every "
        "subspecialty when no subspecialty is given or ``summary`` is set."
    ),
    responses={403: {"description": "Caller is not an admin"}},
)
async def get_style_analytics(
    admin: AdminUserDep,
    subspecialty: Optional[Subspecialty] = Query(default=None),
    limit: int = Query(default=10, ge=1, le=100),
    summary: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
) -> Union[StyleAnalyticsList, StyleAnalyticsSummaryResponse]:
    logger.info(f"Admin {admin.id} reading style analytics")

    if subspecialty is not None and not summary:
        items = await analytics.get_style_analytics(session, subspecialty, limit=limit)
        return StyleAnalyticsList(subspecialty=subspecialty, analytics=items, count=len(items), meta=THRESHOLDS)

    return StyleAnalyticsSummaryResponse(summary=await analytics.get_analytics_summary(session), meta=THRESHOLDS)


@router.post(
    "/style-analytics",
    response_model=AggregationResponse,
    summary="Run Style Analytics Aggregation",
    description=(
        "Aggregate one subspecialty over the given window (default: the last seven days), "
        "or every subspecialty when ``run_all`` is set."
    ),
    responses={400: {"description": "Neither a subspecialty nor run_all was given"}},
)
async def run_style_analytics(
    body: AggregationRequest, admin: AdminUserDep, session: AsyncSession = Depends(get_session)
) -> AggregationResponse:
    if body.run_all:
        logger.info(f"Admin {admin.id} running weekly style aggregation")
        processed, skipped = await analytics.run_weekly_aggregation(session, admin.id)
        return AggregationResponse(
            success=True, message="Weekly aggregation completed", processed=processed, skipped=skipped
        )

    if body.subspecialty is None:
        raise ValidationError('Specify either "subspecialty" or set "run_all" to true')

    period_end = body.period_end or utc_now()
    period_start = body.period_start or period_end - analytics.AGGREGATION_WINDOW
    aggregate = await analytics.aggregate_style_analytics(
        session, body.subspecialty, period_start, period_end, requested_by=admin.id
    )
    if aggregate is None:
        return AggregationResponse(success=False, message="Insufficient data for aggregation", requirements=THRESHOLDS)
    return AggregationResponse(success=True, aggregate=aggregate)
