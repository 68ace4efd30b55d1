"""
Audit log repository.

Audit rows are usually staged with ``stage`` next to the change they
describe and committed by the caller in one transaction.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..entities.audit_logs import AuditLog, build_audit_log
from .base import AsyncBaseRepository, QueryBuilder


class AuditLogRepository(AsyncBaseRepository[AuditLog]):
    """Repository for the audit trail."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, AuditLog)

    async def create(self, entry: AuditLog) -> AuditLog:
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)
        return entry

    async def get_by_id(self, entry_id: str) -> Optional[AuditLog]:
        stmt = select(AuditLog).where(AuditLog.id == entry_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, entry: AuditLog) -> AuditLog:
        raise NotImplementedError("Audit log entries are append-only")

    async def delete(self, entry_id: str) -> bool:
        raise NotImplementedError("Audit log entries are append-only")

    async def list(
        self, limit: Optional[int] = None, offset: Optional[int] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[AuditLog]:
        """List audit entries, newest first.

        Args:
            limit: Maximum records to return
            offset: Records to skip
            filters: Field filters (user_id, action, resource_type, resource_id)
        """
        stmt = select(AuditLog).order_by(AuditLog.created_at.desc())  # type: ignore
        if filters:
            stmt = QueryBuilder.apply_filters(stmt, AuditLog, filters)
        stmt = QueryBuilder.apply_pagination(stmt, limit, offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    def record(
        self,
        user_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Stage an audit entry in the current transaction."""
        return self.stage(build_audit_log(user_id, action, resource_type, resource_id, metadata))
