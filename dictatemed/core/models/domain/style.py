"""Style learning domain models.

These models are the detached, validated view of style data that the prompt
conditioner and the learning pipeline work on. They are built from the
database rows in ``dictatemed.core.database.entities.style_profiles`` and
from the user's global profile JSON.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import StyleSource, Subspecialty

# Confidence keys used by subspecialty profiles.
CONFIDENCE_FIELDS = (
    "section_order",
    "section_inclusion",
    "section_verbosity",
    "phrasing_preferences",
    "avoided_phrases",
    "vocabulary_map",
    "terminology_level",
    "greeting_style",
    "closing_style",
    "signoff_template",
    "formality_level",
    "paragraph_structure",
)


class SubspecialtyStyleProfileData(BaseModel):
    """A clinician's learned writing style for one subspecialty."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    subspecialty: Subspecialty

    section_order: List[str] = Field(default_factory=list)
    section_inclusion: Dict[str, float] = Field(default_factory=dict, description="Section -> inclusion probability")
    section_verbosity: Dict[str, str] = Field(default_factory=dict, description="Section -> brief/normal/detailed")
    phrasing_preferences: Dict[str, List[str]] = Field(default_factory=dict)
    avoided_phrases: Dict[str, List[str]] = Field(default_factory=dict)
    vocabulary_map: Dict[str, str] = Field(default_factory=dict, description="Replaced term -> preferred term")

    terminology_level: Optional[str] = None
    greeting_style: Optional[str] = None
    closing_style: Optional[str] = None
    signoff_template: Optional[str] = None
    formality_level: Optional[str] = None
    paragraph_structure: Optional[str] = None

    confidence: Dict[str, float] = Field(default_factory=dict)
    learning_strength: float = Field(default=1.0, ge=0.0, le=1.0)
    total_edits_analyzed: int = 0
    last_analyzed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class GlobalStyleProfile(BaseModel):
    """The user's subspecialty-agnostic style profile, stored as JSON on the user row."""

    greeting_style: Optional[str] = None
    closing_style: Optional[str] = None
    paragraph_structure: Optional[str] = None
    medication_format: Optional[str] = None
    clinical_value_format: Optional[str] = None
    formality_level: Optional[str] = None
    sentence_complexity: Optional[str] = None
    vocabulary_preferences: Dict[str, str] = Field(default_factory=dict)
    section_order: List[str] = Field(default_factory=list)
    greeting_examples: List[str] = Field(default_factory=list)
    closing_examples: List[str] = Field(default_factory=list)
    confidence: Optional[Dict[str, float]] = None
    total_edits_analyzed: Optional[int] = None
    last_analyzed_at: Optional[datetime] = None


class ConditioningOverrides(BaseModel):
    """Caller switches that can turn individual style hints off."""

    apply_section_order: Optional[bool] = None
    apply_section_inclusion: Optional[bool] = None
    apply_section_verbosity: Optional[bool] = None
    apply_phrasing_preferences: Optional[bool] = None
    apply_avoided_phrases: Optional[bool] = None
    apply_vocabulary: Optional[bool] = None
    apply_signoff: Optional[bool] = None
    apply_formality: Optional[bool] = None
    apply_greeting: Optional[bool] = None
    apply_terminology: Optional[bool] = None


class StyleConditioningConfig(BaseModel):
    """Resolved per-field decisions for conditioning one prompt."""

    source: StyleSource = StyleSource.DEFAULT
    profile: Optional[SubspecialtyStyleProfileData] = None
    effective_learning_strength: float = 0.0

    apply_section_order: bool = False
    apply_section_inclusion: bool = False
    apply_section_verbosity: bool = False
    apply_phrasing_preferences: bool = False
    apply_avoided_phrases: bool = False
    apply_vocabulary: bool = False
    apply_signoff: bool = False
    apply_formality: bool = False
    apply_greeting: bool = False
    apply_terminology: bool = False


class SubspecialtyStyleHints(BaseModel):
    """Natural-language instruction fragments rendered from a profile."""

    source_subspecialty: Optional[Subspecialty] = None
    profile_confidence: Optional[float] = None

    section_order: Optional[str] = None
    section_verbosity: Optional[str] = None
    include_sections: Optional[str] = None
    exclude_sections: Optional[str] = None
    preferred_phrases: Optional[str] = None
    avoided_phrases: Optional[str] = None
    vocabulary_guidance: Optional[str] = None
    greeting: Optional[str] = None
    closing: Optional[str] = None
    formality: Optional[str] = None
    terminology: Optional[str] = None
    general_guidance: Optional[str] = None


class LegacyStyleHints(BaseModel):
    """Older, flatter hint format still consumed by the base letter prompt."""

    greeting: Optional[str] = None
    closing: Optional[str] = None
    section_order: Optional[str] = None
    formality: Optional[str] = None
    vocabulary: Optional[str] = None
    general_guidance: Optional[str] = None


class EditStatistics(BaseModel):
    """Counts of recorded style edits for a user and subspecialty."""

    total_edits: int = 0
    edits_last_7_days: int = 0
    edits_last_30_days: int = 0
    last_edit_date: Optional[datetime] = None


class StyleAnalysisResult(BaseModel):
    """Preferences detected by one LLM analysis run over recent edits."""

    detected_section_order: Optional[List[str]] = None
    detected_section_inclusion: Dict[str, float] = Field(default_factory=dict)
    detected_section_verbosity: Dict[str, str] = Field(default_factory=dict)
    detected_phrasing: Dict[str, List[str]] = Field(default_factory=dict)
    detected_avoided_phrases: Dict[str, List[str]] = Field(default_factory=dict)
    detected_vocabulary: Dict[str, str] = Field(default_factory=dict)
    detected_terminology_level: Optional[str] = None
    detected_greeting_style: Optional[str] = None
    detected_closing_style: Optional[str] = None
    detected_signoff: Optional[str] = None
    detected_formality_level: Optional[str] = None
    detected_paragraph_structure: Optional[str] = None
    confidence: Dict[str, float] = Field(default_factory=dict)
    insights: List[str] = Field(default_factory=list)
    edits_analyzed: int = 0


class AggregatedPattern(BaseModel):
    """A phrase added or removed by several clinicians in one section."""

    pattern: str
    section_type: Optional[str] = None
    frequency: int
    clinician_count: int
    percentage_of_clinicians: int = 0


class SectionOrderPattern(BaseModel):
    order: List[str]
    frequency: int


class AggregatedPhrasePattern(BaseModel):
    phrase: str
    section_type: str
    action: str = Field(description="added or removed")
    frequency: int
    clinician_count: int
    percentage_of_clinicians: int


class StyleAnalyticsAggregateData(BaseModel):
    """De-identified patterns for one subspecialty and ISO week."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    subspecialty: Subspecialty
    period: str
    common_additions: List[AggregatedPattern] = Field(default_factory=list)
    common_deletions: List[AggregatedPattern] = Field(default_factory=list)
    section_order_patterns: List[SectionOrderPattern] = Field(default_factory=list)
    phrasing_patterns: List[AggregatedPhrasePattern] = Field(default_factory=list)
    sample_size: int
    created_at: datetime


class SubspecialtyAnalyticsSummary(BaseModel):
    subspecialty: Subspecialty
    latest_period: str
    total_samples: int
    top_additions: List[str] = Field(default_factory=list)
    top_deletions: List[str] = Field(default_factory=list)


class StyleAnalyticsSummary(BaseModel):
    """Latest aggregate per subspecialty."""

    subspecialties: List[SubspecialtyAnalyticsSummary] = Field(default_factory=list)
    last_updated: Optional[datetime] = None
