"""
Style learning entity models.

This module contains the tables behind per-subspecialty style learning:

- ``SubspecialtyStyleProfile``: learned preferences for one user and one
  subspecialty (unique per pair).
- ``StyleEdit``: one changed letter section captured at approval time.
- ``StyleSeedLetter``: a sample letter the clinician uploads to bootstrap a
  profile before any edits exist.
- ``StyleAnalyticsAggregate``: de-identified weekly patterns across
  clinicians of one subspecialty.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from dictatemed.core.models.domain.enums import Subspecialty

from ..base import Base, dump_json, load_json, new_id, utc_now


class SubspecialtyStyleProfileBase(Base):
    """Base fields for a subspecialty style profile."""

    user_id: str = Field(foreign_key="users.id", index=True)
    subspecialty: Subspecialty = Field(index=True)

    # Learned preferences (JSON text)
    section_order: str = Field(default="[]", description="JSON array of section names")
    section_inclusion: str = Field(default="{}", description="JSON map section -> inclusion probability")
    section_verbosity: str = Field(default="{}", description="JSON map section -> verbosity level")
    phrasing_preferences: str = Field(default="{}", description="JSON map section -> preferred phrases")
    avoided_phrases: str = Field(default="{}", description="JSON map section -> avoided phrases")
    vocabulary_map: str = Field(default="{}", description="JSON map replaced term -> preferred term")

    # Scalar preferences
    terminology_level: Optional[str] = Field(default=None)
    greeting_style: Optional[str] = Field(default=None)
    closing_style: Optional[str] = Field(default=None)
    signoff_template: Optional[str] = Field(default=None)
    formality_level: Optional[str] = Field(default=None)
    paragraph_structure: Optional[str] = Field(default=None)

    # Learning metadata
    confidence: str = Field(default="{}", description="JSON map field -> confidence 0..1")
    learning_strength: float = Field(default=1.0, ge=0.0, le=1.0)
    total_edits_analyzed: int = Field(default=0, ge=0)
    last_analyzed_at: Optional[datetime] = Field(default=None)


class SubspecialtyStyleProfile(SubspecialtyStyleProfileBase, table=True):
    """Persistent subspecialty style profile.

    Table: style_profiles
    """

    __tablename__ = "style_profiles"
    __table_args__ = (
        UniqueConstraint("user_id", "subspecialty", name="uq_style_profiles_user_subspecialty"),
        {"extend_existing": True},
    )

    id: str = Field(default_factory=new_id, primary_key=True)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    def to_data(self) -> Dict[str, Any]:
        """Decode JSON columns into a plain dict for the domain model."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subspecialty": self.subspecialty,
            "section_order": load_json(self.section_order, []),
            "section_inclusion": load_json(self.section_inclusion, {}),
            "section_verbosity": load_json(self.section_verbosity, {}),
            "phrasing_preferences": load_json(self.phrasing_preferences, {}),
            "avoided_phrases": load_json(self.avoided_phrases, {}),
            "vocabulary_map": load_json(self.vocabulary_map, {}),
            "terminology_level": self.terminology_level,
            "greeting_style": self.greeting_style,
            "closing_style": self.closing_style,
            "signoff_template": self.signoff_template,
            "formality_level": self.formality_level,
            "paragraph_structure": self.paragraph_structure,
            "confidence": load_json(self.confidence, {}),
            "learning_strength": self.learning_strength,
            "total_edits_analyzed": self.total_edits_analyzed,
            "last_analyzed_at": self.last_analyzed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def apply_data(self, data: Dict[str, Any]) -> None:
        """Write decoded values back, encoding the JSON columns."""
        for key in (
            "section_order",
            "section_inclusion",
            "section_verbosity",
            "phrasing_preferences",
            "avoided_phrases",
            "vocabulary_map",
            "confidence",
        ):
            if key in data and data[key] is not None:
                setattr(self, key, dump_json(data[key]))
        for key in (
            "terminology_level",
            "greeting_style",
            "closing_style",
            "signoff_template",
            "formality_level",
            "paragraph_structure",
            "learning_strength",
            "total_edits_analyzed",
            "last_analyzed_at",
        ):
            if key in data:
                setattr(self, key, data[key])

    def __repr__(self) -> str:
        return f"SubspecialtyStyleProfile(user_id={self.user_id}, subspecialty={self.subspecialty})"


class StyleEdit(Base, table=True):
    """One section-level difference between a draft and its approved letter.

    Table: style_edits
    """

    __tablename__ = "style_edits"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    letter_id: Optional[str] = Field(default=None, foreign_key="letters.id", index=True)
    subspecialty: Optional[Subspecialty] = Field(default=None, index=True)

    section_type: str = Field(description="Letter section the edit belongs to")
    edit_type: str = Field(description="added, removed or modified")
    before_text: Optional[str] = Field(default=None)
    after_text: Optional[str] = Field(default=None)
    character_changes: int = Field(default=0)
    word_changes: int = Field(default=0)

    created_at: datetime = Field(default_factory=utc_now, index=True)

    def __repr__(self) -> str:
        return f"StyleEdit(id={self.id}, section={self.section_type}, type={self.edit_type})"


class StyleSeedLetter(Base, table=True):
    """A sample letter used to bootstrap a subspecialty profile.

    Table: style_seed_letters
    """

    __tablename__ = "style_seed_letters"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    subspecialty: Subspecialty = Field(index=True)
    letter_text: str = Field(description="Full text of the sample letter")
    analyzed_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)

    def __repr__(self) -> str:
        return f"StyleSeedLetter(id={self.id}, subspecialty={self.subspecialty})"


class StyleAnalyticsAggregate(Base, table=True):
    """De-identified style patterns for one subspecialty and ISO week.

    Rows carry counts and phrases only. No clinician or patient identifiers
    are stored.

    Table: style_analytics_aggregates
    """

    __tablename__ = "style_analytics_aggregates"
    __table_args__ = (
        UniqueConstraint("subspecialty", "period", name="uq_style_analytics_subspecialty_period"),
        {"extend_existing": True},
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    subspecialty: Subspecialty = Field(index=True)
    period: str = Field(description="ISO week, e.g. 2026-W07")

    common_additions: str = Field(default="[]", description="JSON array of added phrase patterns")
    common_deletions: str = Field(default="[]", description="JSON array of removed phrase patterns")
    section_order_patterns: str = Field(default="[]", description="JSON array of section orders")
    phrasing_patterns: str = Field(default="[]", description="JSON array of phrasing patterns")
    sample_size: int = Field(default=0)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    def get_patterns(self, column: str) -> List[Dict[str, Any]]:
        return load_json(getattr(self, column), [])

    def set_patterns(self, column: str, patterns: List[Dict[str, Any]]) -> None:
        setattr(self, column, dump_json(patterns))

    def __repr__(self) -> str:
        return f"StyleAnalyticsAggregate(subspecialty={self.subspecialty}, period={self.period})"
