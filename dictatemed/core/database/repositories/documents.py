"""
Clinical document repository.

All reads are scoped to the owning user and hide soft-deleted rows.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..base import utc_now
from ..entities.documents import Document
from .base import AsyncBaseRepository, QueryBuilder


class DocumentRepository(AsyncBaseRepository[Document]):
    """Repository for clinical document data access operations."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Document)

    async def create(self, document: Document) -> Document:
        self.session.add(document)
        await self.session.commit()
        await self.session.refresh(document)
        return document

    async def get_by_id(self, document_id: str) -> Optional[Document]:
        stmt = select(Document).where(Document.id == document_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_user(self, document_id: str, user_id: str) -> Optional[Document]:
        """Get a live document owned by ``user_id``."""
        stmt = select(Document).where(Document.id == document_id, Document.user_id == user_id)
        stmt = QueryBuilder.exclude_deleted(stmt, Document)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many_for_user(self, document_ids: Sequence[str], user_id: str) -> List[Document]:
        if not document_ids:
            return []
        stmt = select(Document).where(Document.id.in_(list(document_ids)), Document.user_id == user_id)  # type: ignore
        stmt = QueryBuilder.exclude_deleted(stmt, Document)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, document: Document) -> Document:
        document.updated_at = utc_now()
        self.session.add(document)
        await self.session.commit()
        await self.session.refresh(document)
        return document

    async def delete(self, document_id: str) -> bool:
        """Soft-delete a document."""
        document = await self.get_by_id(document_id)
        if document and document.deleted_at is None:
            document.deleted_at = utc_now()
            self.session.add(document)
            await self.session.commit()
            return True
        return False

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[Document]:
        stmt = QueryBuilder.exclude_deleted(select(Document), Document).order_by(Document.created_at.desc())  # type: ignore
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, Document, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_user(
        self, user_id: str, limit: int, offset: int, filters: Optional[Dict[str, Any]] = None
    ) -> Tuple[List[Document], int]:
        """List a user's documents, newest first, with the total count."""
        base = QueryBuilder.exclude_deleted(select(Document).where(Document.user_id == user_id), Document)
        if filters:
            base = QueryBuilder.apply_filters(base, Document, filters)
        total = (await self.session.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        stmt = QueryBuilder.apply_pagination(base.order_by(Document.created_at.desc()), limit, offset)  # type: ignore
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total
