"""
Style learning repositories.

Data access for subspecialty style profiles, recorded style edits, seed
letters and the de-identified analytics aggregates.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dictatemed.core.models.domain.enums import Subspecialty

from ..base import utc_now
from ..entities.style_profiles import (
    StyleAnalyticsAggregate,
    StyleEdit,
    StyleSeedLetter,
    SubspecialtyStyleProfile,
)
from .base import AsyncBaseRepository, QueryBuilder


class StyleProfileRepository(AsyncBaseRepository[SubspecialtyStyleProfile]):
    """Repository for subspecialty style profiles."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, SubspecialtyStyleProfile)

    async def create(self, profile: SubspecialtyStyleProfile) -> SubspecialtyStyleProfile:
        self.session.add(profile)
        await self.session.commit()
        await self.session.refresh(profile)
        return profile

    async def get_by_id(self, profile_id: str) -> Optional[SubspecialtyStyleProfile]:
        stmt = select(SubspecialtyStyleProfile).where(SubspecialtyStyleProfile.id == profile_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_user(self, user_id: str, subspecialty: Subspecialty) -> Optional[SubspecialtyStyleProfile]:
        """Get the profile for a (user, subspecialty) pair."""
        stmt = select(SubspecialtyStyleProfile).where(
            SubspecialtyStyleProfile.user_id == user_id,
            SubspecialtyStyleProfile.subspecialty == subspecialty,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, profile: SubspecialtyStyleProfile) -> SubspecialtyStyleProfile:
        profile.updated_at = utc_now()
        self.session.add(profile)
        await self.session.commit()
        await self.session.refresh(profile)
        return profile

    async def delete(self, profile_id: str) -> bool:
        profile = await self.get_by_id(profile_id)
        if profile:
            await self.session.delete(profile)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[SubspecialtyStyleProfile]:
        stmt = select(SubspecialtyStyleProfile).order_by(SubspecialtyStyleProfile.subspecialty)
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, SubspecialtyStyleProfile, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class StyleEditRepository(AsyncBaseRepository[StyleEdit]):
    """Repository for recorded style edits."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, StyleEdit)

    async def create(self, edit: StyleEdit) -> StyleEdit:
        self.session.add(edit)
        await self.session.commit()
        await self.session.refresh(edit)
        return edit

    async def get_by_id(self, edit_id: str) -> Optional[StyleEdit]:
        stmt = select(StyleEdit).where(StyleEdit.id == edit_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, edit: StyleEdit) -> StyleEdit:
        self.session.add(edit)
        await self.session.commit()
        await self.session.refresh(edit)
        return edit

    async def delete(self, edit_id: str) -> bool:
        edit = await self.get_by_id(edit_id)
        if edit:
            await self.session.delete(edit)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[StyleEdit]:
        """List edits, newest first.

        Args:
            limit: Maximum records to return
            offset: Records to skip
            filters: Field filters (user_id, subspecialty, letter_id)
        """
        stmt = select(StyleEdit).order_by(StyleEdit.created_at.desc())  # type: ignore
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, StyleEdit, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(
        self, user_id: str, subspecialty: Optional[Subspecialty] = None, since: Optional[datetime] = None
    ) -> int:
        stmt = select(func.count()).select_from(StyleEdit).where(StyleEdit.user_id == user_id)
        if subspecialty is not None:
            stmt = stmt.where(StyleEdit.subspecialty == subspecialty)
        if since is not None:
            stmt = stmt.where(StyleEdit.created_at >= since)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def last_edit_at(self, user_id: str, subspecialty: Optional[Subspecialty] = None) -> Optional[datetime]:
        stmt = select(func.max(StyleEdit.created_at)).where(StyleEdit.user_id == user_id)
        if subspecialty is not None:
            stmt = stmt.where(StyleEdit.subspecialty == subspecialty)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_in_window(self, subspecialty: Subspecialty, start: datetime, end: datetime) -> List[StyleEdit]:
        """Edits for a subspecialty across all clinicians, oldest first."""
        stmt = (
            select(StyleEdit)
            .where(
                StyleEdit.subspecialty == subspecialty,
                StyleEdit.created_at >= start,
                StyleEdit.created_at <= end,
            )
            .order_by(StyleEdit.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class StyleSeedLetterRepository(AsyncBaseRepository[StyleSeedLetter]):
    """Repository for seed letters."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, StyleSeedLetter)

    async def create(self, seed: StyleSeedLetter) -> StyleSeedLetter:
        self.session.add(seed)
        await self.session.commit()
        await self.session.refresh(seed)
        return seed

    async def get_by_id(self, seed_id: str) -> Optional[StyleSeedLetter]:
        stmt = select(StyleSeedLetter).where(StyleSeedLetter.id == seed_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, seed: StyleSeedLetter) -> StyleSeedLetter:
        self.session.add(seed)
        await self.session.commit()
        await self.session.refresh(seed)
        return seed

    async def delete(self, seed_id: str) -> bool:
        seed = await self.get_by_id(seed_id)
        if seed:
            await self.session.delete(seed)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[StyleSeedLetter]:
        stmt = select(StyleSeedLetter).order_by(StyleSeedLetter.created_at.desc())  # type: ignore
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, StyleSeedLetter, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class StyleAnalyticsRepository(AsyncBaseRepository[StyleAnalyticsAggregate]):
    """Repository for weekly analytics aggregates."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, StyleAnalyticsAggregate)

    async def create(self, aggregate: StyleAnalyticsAggregate) -> StyleAnalyticsAggregate:
        self.session.add(aggregate)
        await self.session.commit()
        await self.session.refresh(aggregate)
        return aggregate

    async def get_by_id(self, aggregate_id: str) -> Optional[StyleAnalyticsAggregate]:
        stmt = select(StyleAnalyticsAggregate).where(StyleAnalyticsAggregate.id == aggregate_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_period(self, subspecialty: Subspecialty, period: str) -> Optional[StyleAnalyticsAggregate]:
        stmt = select(StyleAnalyticsAggregate).where(
            StyleAnalyticsAggregate.subspecialty == subspecialty,
            StyleAnalyticsAggregate.period == period,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, aggregate: StyleAnalyticsAggregate) -> StyleAnalyticsAggregate:
        aggregate.updated_at = utc_now()
        self.session.add(aggregate)
        await self.session.commit()
        await self.session.refresh(aggregate)
        return aggregate

    async def delete(self, aggregate_id: str) -> bool:
        aggregate = await self.get_by_id(aggregate_id)
        if aggregate:
            await self.session.delete(aggregate)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[StyleAnalyticsAggregate]:
        """List aggregates, newest first.

        Args:
            limit: Maximum records to return
            offset: Records to skip
            filters: Field filters (subspecialty, period)
        """
        stmt = select(StyleAnalyticsAggregate).order_by(
            StyleAnalyticsAggregate.created_at.desc(),  # type: ignore
            StyleAnalyticsAggregate.period.desc(),  # type: ignore
        )
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, StyleAnalyticsAggregate, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest_per_subspecialty(self) -> List[StyleAnalyticsAggregate]:
        latest: Dict[Subspecialty, StyleAnalyticsAggregate] = {}
        for aggregate in await self.list():
            latest.setdefault(aggregate.subspecialty, aggregate)
        return list(latest.values())
