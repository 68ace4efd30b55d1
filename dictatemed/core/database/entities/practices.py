"""
Practice and user entity models.

A practice groups the clinicians that share a letterhead and referral inbox.
Users belong to exactly one practice and carry their own settings and the
global (subspecialty-agnostic) style profile as JSON text.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Field

from dictatemed.core.models.domain.enums import UserRole

from ..base import Base, dump_json, load_json, new_id, utc_now


class PracticeBase(Base):
    """Base fields for a practice."""

    name: str = Field(description="Practice display name")
    letterhead: Optional[str] = Field(default=None, description="Letterhead text or image reference")
    settings: str = Field(default="{}", description="JSON object of practice-wide settings")


class Practice(PracticeBase, table=True):
    """Persistent practice record.

    Table: practices
    """

    __tablename__ = "practices"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    def get_settings(self) -> Dict[str, Any]:
        """Get practice settings as a dict."""
        return load_json(self.settings, {})

    def set_settings(self, settings: Dict[str, Any]) -> None:
        """Set practice settings from a dict."""
        self.settings = dump_json(settings)

    def __repr__(self) -> str:
        return f"Practice(id={self.id}, name={self.name})"


class UserBase(Base):
    """Base fields for a user."""

    email: str = Field(index=True, unique=True, description="Login email")
    name: str = Field(description="Display name used in letters")
    role: UserRole = Field(default=UserRole.SPECIALIST, description="Role inside the practice")
    practice_id: str = Field(foreign_key="practices.id", index=True)
    subspecialties: str = Field(default="[]", description="JSON array of Subspecialty values")
    style_profile: Optional[str] = Field(default=None, description="JSON global style profile")
    settings: str = Field(default="{}", description="JSON object of user settings")


class User(UserBase, table=True):
    """Persistent clinician account.

    Table: users
    """

    __tablename__ = "users"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    def get_subspecialties(self) -> List[str]:
        """Get subspecialties as a list."""
        return load_json(self.subspecialties, [])

    def set_subspecialties(self, subspecialties: List[str]) -> None:
        """Set subspecialties from a list."""
        self.subspecialties = dump_json(subspecialties)

    def get_settings(self) -> Dict[str, Any]:
        """Get user settings as a dict."""
        return load_json(self.settings, {})

    def set_settings(self, settings: Dict[str, Any]) -> None:
        """Set user settings from a dict."""
        self.settings = dump_json(settings)

    def get_style_profile(self) -> Optional[Dict[str, Any]]:
        """Get the global style profile, or None when never analysed."""
        return load_json(self.style_profile, None)

    def set_style_profile(self, profile: Optional[Dict[str, Any]]) -> None:
        self.style_profile = dump_json(profile) if profile is not None else None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"User(id={self.id}, email={self.email}, role={self.role})"
