"""
Letter repository.

All user-facing reads are scoped to the owning user. Every read hides
soft-deleted rows.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..base import utc_now
from ..entities.letters import Letter
from .base import AsyncBaseRepository, QueryBuilder


class LetterRepository(AsyncBaseRepository[Letter]):
    """Repository for letter data access operations."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Letter)

    async def create(self, letter: Letter) -> Letter:
        self.session.add(letter)
        await self.session.commit()
        await self.session.refresh(letter)
        return letter

    async def get_by_id(self, letter_id: str) -> Optional[Letter]:
        stmt = select(Letter).where(Letter.id == letter_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_user(self, letter_id: str, user_id: str) -> Optional[Letter]:
        """Get a live letter owned by ``user_id``."""
        stmt = select(Letter).where(Letter.id == letter_id, Letter.user_id == user_id)
        stmt = QueryBuilder.exclude_deleted(stmt, Letter)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, letter: Letter) -> Letter:
        letter.updated_at = utc_now()
        self.session.add(letter)
        await self.session.commit()
        await self.session.refresh(letter)
        return letter

    async def delete(self, letter_id: str) -> bool:
        """Soft-delete a letter."""
        letter = await self.get_by_id(letter_id)
        if letter and letter.deleted_at is None:
            letter.deleted_at = utc_now()
            self.session.add(letter)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[Letter]:
        stmt = QueryBuilder.exclude_deleted(select(Letter), Letter).order_by(Letter.created_at.desc())  # type: ignore
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, Letter, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_user(
        self, user_id: str, limit: int, offset: int, filters: Optional[Dict[str, Any]] = None
    ) -> Tuple[List[Letter], int]:
        """List a user's letters, newest first, with the total count.

        Args:
            user_id: Owner
            limit: Page size
            offset: Rows to skip
            filters: Field filters (status, letter_type)

        Returns:
            Tuple of (letters on this page, total matching letters)
        """
        base = QueryBuilder.exclude_deleted(select(Letter).where(Letter.user_id == user_id), Letter)
        if filters:
            base = QueryBuilder.apply_filters(base, Letter, filters)
        total = (await self.session.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        stmt = QueryBuilder.apply_pagination(base.order_by(Letter.created_at.desc()), limit, offset)  # type: ignore
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def list_by_ids(self, letter_ids: Sequence[str]) -> List[Letter]:
        """Letters with the given ids across all owners, skipping deleted rows."""
        if not letter_ids:
            return []
        stmt = QueryBuilder.exclude_deleted(select(Letter).where(Letter.id.in_(letter_ids)), Letter)  # type: ignore
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
