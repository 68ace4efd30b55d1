"""
Audit log entity model.

Every state-changing operation on clinical data writes an audit row. The row
is staged in the same session as the change so both commit together.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Field

from ..base import Base, dump_json, load_json, new_id, utc_now


class AuditLog(Base, table=True):
    """Append-only audit trail entry.

    Table: audit_logs
    """

    __tablename__ = "audit_logs"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    action: str = Field(index=True, description="Dotted action name, e.g. referral.create")
    resource_type: str = Field(description="Entity kind the action touched")
    resource_id: Optional[str] = Field(default=None, index=True)
    details: str = Field(default="{}", description="JSON metadata about the action")

    created_at: datetime = Field(default_factory=utc_now, index=True)

    def get_details(self) -> Dict[str, Any]:
        return load_json(self.details, {})

    def __repr__(self) -> str:
        return f"AuditLog(action={self.action}, resource={self.resource_type}:{self.resource_id})"


def build_audit_log(
    user_id: str,
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Create an unsaved audit row."""
    return AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=dump_json(metadata or {}),
    )
