"""
Practice and user repositories.

Data access for practices and the clinicians that belong to them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..base import utc_now
from ..entities.practices import Practice, User
from .base import AsyncBaseRepository, QueryBuilder


class PracticeRepository(AsyncBaseRepository[Practice]):
    """Repository for practice data access operations."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Practice)

    async def create(self, practice: Practice) -> Practice:
        self.session.add(practice)
        await self.session.commit()
        await self.session.refresh(practice)
        return practice

    async def get_by_id(self, practice_id: str) -> Optional[Practice]:
        stmt = select(Practice).where(Practice.id == practice_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, practice: Practice) -> Practice:
        practice.updated_at = utc_now()
        self.session.add(practice)
        await self.session.commit()
        await self.session.refresh(practice)
        return practice

    async def delete(self, practice_id: str) -> bool:
        practice = await self.get_by_id(practice_id)
        if practice:
            await self.session.delete(practice)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[Practice]:
        stmt = select(Practice).order_by(Practice.name)
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, Practice, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class UserRepository(AsyncBaseRepository[User]):
    """Repository for user data access operations."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, User)

    async def create(self, user: User) -> User:
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def get_by_id(self, user_id: str) -> Optional[User]:
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(User.email == email)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, user: User) -> User:
        user.updated_at = utc_now()
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def delete(self, user_id: str) -> bool:
        user = await self.get_by_id(user_id)
        if user:
            await self.session.delete(user)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[User]:
        """List users.

        Args:
            limit: Maximum records to return
            offset: Records to skip
            filters: Field filters (practice_id, role)
        """
        stmt = select(User).order_by(User.name)
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, User, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
