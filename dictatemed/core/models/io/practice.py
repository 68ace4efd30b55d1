"""
Practice, member and user settings I/O models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.enums import LetterType, ModelPreference, UserRole


class PracticeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    letterhead: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class PracticeUpdate(BaseModel):
    """Fields an admin may change; omitted fields stay as they are."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    letterhead: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class PracticeUserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: UserRole
    subspecialties: List[str] = Field(default_factory=list)
    created_at: datetime


class LetterDefaults(BaseModel):
    letter_type: Optional[LetterType] = None
    sign_off: Optional[str] = None
    cc_gp: Optional[bool] = None


class UserSettings(BaseModel):
    """Per-user settings stored as JSON on the user row."""

    model_config = ConfigDict(extra="allow")

    theme: Optional[Literal["light", "dark", "system"]] = None
    style_mode: Optional[Literal["subspecialty", "global", "off"]] = None
    model_preference: Optional[ModelPreference] = None
    letter_defaults: Optional[LetterDefaults] = None
