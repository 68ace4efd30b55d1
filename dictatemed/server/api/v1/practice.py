"""
Practice and User Settings Endpoints.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.models.io.practice import PracticeRead, PracticeUpdate, PracticeUserRead, UserSettings
from dictatemed.domains.practice import service
from dictatemed.server.services.deps import AdminUserDep, CurrentUserDep

practice_router = APIRouter(tags=["practice"])
user_router = APIRouter(tags=["user"])


@practice_router.get("", response_model=PracticeRead, summary="Get Practice")
async def get_practice(user: CurrentUserDep, session: AsyncSession = Depends(get_session)) -> PracticeRead:
    return await service.get_practice(session, user)


@practice_router.patch(
    "",
    response_model=PracticeRead,
    summary="Update Practice",
    description="Change the practice name, letterhead or settings. Admin only.",
    responses={403: {"description": "Admin access required"}},
)
async def update_practice(
    body: PracticeUpdate, user: AdminUserDep, session: AsyncSession = Depends(get_session)
) -> PracticeRead:
    return await service.update_practice(session, user, body)


@practice_router.get(
    "/users",
    response_model=List[PracticeUserRead],
    summary="List Practice Members",
    responses={403: {"description": "Admin access required"}},
)
async def list_practice_users(user: AdminUserDep, session: AsyncSession = Depends(get_session)) -> List[PracticeUserRead]:
    return await service.list_practice_users(session, user)


@user_router.get("/settings", response_model=UserSettings, summary="Get User Settings")
async def get_settings(user: CurrentUserDep) -> UserSettings:
    return service.get_user_settings(user)


@user_router.put(
    "/settings",
    response_model=UserSettings,
    summary="Update User Settings",
    description="Merge the given settings into the stored ones; nested objects merge key by key.",
)
async def update_settings(
    body: UserSettings, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> UserSettings:
    return await service.update_user_settings(session, user, body)
