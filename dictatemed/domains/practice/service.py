"""
Practice administration and per-user settings.

Practice details are visible to every member; changing them and listing the
members requires the ADMIN role. User settings are a JSON object merged
key by key, so a client can update one preference without resending the
rest.
"""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dictatemed.core.database.base import utc_now
from dictatemed.core.database.entities.practices import Practice, User
from dictatemed.core.database.repositories import AuditLogRepository, PracticeRepository, UserRepository
from dictatemed.core.errors import ForbiddenError, NotFoundError
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.io.practice import PracticeRead, PracticeUpdate, PracticeUserRead, UserSettings

logger = get_logger(__name__)


def deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``updates`` into a copy of ``base``; nested dicts merge, None removes a key."""
    merged = dict(base)
    for key, value in updates.items():
        if value is None:
            merged.pop(key, None)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _require_admin(user: User) -> None:
    if not user.is_admin:
        raise ForbiddenError("Admin access required")


def _to_practice_read(practice: Practice) -> PracticeRead:
    return PracticeRead(
        id=practice.id,
        name=practice.name,
        letterhead=practice.letterhead,
        settings=practice.get_settings(),
        created_at=practice.created_at,
        updated_at=practice.updated_at,
    )


async def _load_practice(session: AsyncSession, practice_id: str) -> Practice:
    practice = await PracticeRepository(session).get_by_id(practice_id)
    if practice is None:
        raise NotFoundError("Practice not found")
    return practice


async def get_practice(session: AsyncSession, user: User) -> PracticeRead:
    return _to_practice_read(await _load_practice(session, user.practice_id))


async def update_practice(session: AsyncSession, user: User, data: PracticeUpdate) -> PracticeRead:
    _require_admin(user)
    practice = await _load_practice(session, user.practice_id)

    changes = data.model_dump(exclude_unset=True)
    if "name" in changes and data.name is not None:
        practice.name = data.name
    if "letterhead" in changes:
        practice.letterhead = data.letterhead
    if data.settings is not None:
        practice.set_settings(deep_merge(practice.get_settings(), data.settings))
    practice.updated_at = utc_now()

    PracticeRepository(session).stage(practice)
    AuditLogRepository(session).record(
        user.id, "practice.update", "practice", practice.id, {"fields": sorted(changes)}
    )
    await session.commit()
    await session.refresh(practice)

    logger.info(f"Practice updated: {practice.id}", extra={"fields": sorted(changes)})
    return _to_practice_read(practice)


async def list_practice_users(session: AsyncSession, user: User) -> List[PracticeUserRead]:
    _require_admin(user)
    stmt = select(User).where(User.practice_id == user.practice_id).order_by(User.name)
    result = await session.execute(stmt)
    return [
        PracticeUserRead(
            id=member.id,
            email=member.email,
            name=member.name,
            role=member.role,
            subspecialties=member.get_subspecialties(),
            created_at=member.created_at,
        )
        for member in result.scalars().all()
    ]


def get_user_settings(user: User) -> UserSettings:
    return UserSettings.model_validate(user.get_settings())


async def update_user_settings(session: AsyncSession, user: User, updates: UserSettings) -> UserSettings:
    """Merge ``updates`` into the stored settings and return the result."""
    merged = deep_merge(user.get_settings(), updates.model_dump(mode="json", exclude_unset=True))
    # Validate the merged object before storing it
    settings_model = UserSettings.model_validate(merged)
    user.set_settings(settings_model.model_dump(mode="json", exclude_none=True))
    user.updated_at = utc_now()

    UserRepository(session).stage(user)
    AuditLogRepository(session).record(
        user.id, "user.settings_update", "user", user.id, {"keys": sorted(updates.model_fields_set)}
    )
    await session.commit()
    await session.refresh(user)

    logger.info(f"Settings updated for user {user.id}")
    return settings_model
