"""
Recording repository.

All reads are scoped to the owning user and hide soft-deleted rows.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..base import utc_now
from ..entities.recordings import Recording
from .base import AsyncBaseRepository, QueryBuilder


class RecordingRepository(AsyncBaseRepository[Recording]):
    """Repository for recording data access operations."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Recording)

    async def create(self, recording: Recording) -> Recording:
        self.session.add(recording)
        await self.session.commit()
        await self.session.refresh(recording)
        return recording

    async def get_by_id(self, recording_id: str) -> Optional[Recording]:
        stmt = select(Recording).where(Recording.id == recording_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_user(self, recording_id: str, user_id: str) -> Optional[Recording]:
        """Get a live recording owned by ``user_id``."""
        stmt = select(Recording).where(Recording.id == recording_id, Recording.user_id == user_id)
        stmt = QueryBuilder.exclude_deleted(stmt, Recording)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, recording: Recording) -> Recording:
        recording.updated_at = utc_now()
        self.session.add(recording)
        await self.session.commit()
        await self.session.refresh(recording)
        return recording

    async def delete(self, recording_id: str) -> bool:
        """Soft-delete a recording."""
        recording = await self.get_by_id(recording_id)
        if recording and recording.deleted_at is None:
            recording.deleted_at = utc_now()
            self.session.add(recording)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[Recording]:
        stmt = QueryBuilder.exclude_deleted(select(Recording), Recording).order_by(Recording.created_at.desc())  # type: ignore
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, Recording, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_user(
        self, user_id: str, limit: int, offset: int, filters: Optional[Dict[str, Any]] = None
    ) -> Tuple[List[Recording], int]:
        """List a user's recordings, newest first, with the total count."""
        base = QueryBuilder.exclude_deleted(select(Recording).where(Recording.user_id == user_id), Recording)
        if filters:
            base = QueryBuilder.apply_filters(base, Recording, filters)
        total = (await self.session.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        stmt = QueryBuilder.apply_pagination(base.order_by(Recording.created_at.desc()), limit, offset)  # type: ignore
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total
