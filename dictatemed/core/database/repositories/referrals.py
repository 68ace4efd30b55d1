"""
Referral document repository.

Referral documents are scoped to a practice rather than a single user so
any clinician in the practice can pick up an incoming referral.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from dictatemed.core.models.domain.enums import FastExtractionStatus

from ..base import utc_now
from ..entities.referrals import ReferralDocument
from .base import AsyncBaseRepository, QueryBuilder


class ReferralDocumentRepository(AsyncBaseRepository[ReferralDocument]):
    """Repository for referral document data access operations."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, ReferralDocument)

    async def create(self, document: ReferralDocument) -> ReferralDocument:
        self.session.add(document)
        await self.session.commit()
        await self.session.refresh(document)
        return document

    async def get_by_id(self, document_id: str) -> Optional[ReferralDocument]:
        stmt = select(ReferralDocument).where(ReferralDocument.id == document_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_practice(self, document_id: str, practice_id: str) -> Optional[ReferralDocument]:
        stmt = select(ReferralDocument).where(
            ReferralDocument.id == document_id, ReferralDocument.practice_id == practice_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, document: ReferralDocument) -> ReferralDocument:
        document.updated_at = utc_now()
        self.session.add(document)
        await self.session.commit()
        await self.session.refresh(document)
        return document

    async def delete(self, document_id: str) -> bool:
        document = await self.get_by_id(document_id)
        if document:
            await self.session.delete(document)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[ReferralDocument]:
        stmt = select(ReferralDocument).order_by(ReferralDocument.created_at.desc())  # type: ignore
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, ReferralDocument, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_practice(
        self, practice_id: str, limit: int, offset: int, filters: Optional[Dict[str, Any]] = None
    ) -> Tuple[List[ReferralDocument], int]:
        """List a practice's referrals, newest first, with the total count."""
        base = select(ReferralDocument).where(ReferralDocument.practice_id == practice_id)
        if filters:
            base = QueryBuilder.apply_filters(base, ReferralDocument, filters)
        total = (await self.session.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        stmt = QueryBuilder.apply_pagination(
            base.order_by(ReferralDocument.created_at.desc()), limit, offset  # type: ignore
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def claim_fast_extraction(self, document_id: str) -> bool:
        """Atomically move fast extraction to PROCESSING.

        Returns False when another request already holds the lock.
        """
        stmt = (
            update(ReferralDocument)
            .where(ReferralDocument.id == document_id)
            .where(
                (ReferralDocument.fast_extraction_status.is_(None))  # type: ignore
                | (ReferralDocument.fast_extraction_status != FastExtractionStatus.PROCESSING)
            )
            .values(
                fast_extraction_status=FastExtractionStatus.PROCESSING,
                fast_extraction_started_at=utc_now(),
                fast_extraction_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount > 0
