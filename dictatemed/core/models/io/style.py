"""
Style profile I/O models for API requests and responses.

Request bodies use the same snake_case field names as the domain model
``SubspecialtyStyleProfileData``, which doubles as the read schema.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.enums import StyleSource, Subspecialty
from ..domain.style import (
    EditStatistics,
    StyleAnalysisResult,
    StyleAnalyticsAggregateData,
    StyleAnalyticsSummary,
    SubspecialtyStyleProfileData,
)


class StyleProfileUpdate(BaseModel):
    """Schema for updating a subspecialty profile. Unset fields are left alone."""

    section_order: Optional[List[str]] = None
    section_inclusion: Optional[Dict[str, float]] = None
    section_verbosity: Optional[Dict[str, str]] = None
    phrasing_preferences: Optional[Dict[str, List[str]]] = None
    avoided_phrases: Optional[Dict[str, List[str]]] = None
    vocabulary_map: Optional[Dict[str, str]] = None
    terminology_level: Optional[str] = None
    greeting_style: Optional[str] = None
    closing_style: Optional[str] = None
    signoff_template: Optional[str] = None
    formality_level: Optional[str] = None
    paragraph_structure: Optional[str] = None
    confidence: Optional[Dict[str, float]] = None
    learning_strength: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class StyleProfileCreate(StyleProfileUpdate):
    """Schema for creating (or upserting) a subspecialty profile."""

    subspecialty: Subspecialty


class StyleProfileList(BaseModel):
    profiles: List[SubspecialtyStyleProfileData]
    total_count: int


class ProfileOperationResponse(BaseModel):
    """Outcome of a profile mutation that may be refused without an error."""

    success: bool
    message: str
    profile: Optional[SubspecialtyStyleProfileData] = None


class LearningStrengthUpdate(BaseModel):
    learning_strength: float = Field(description="0.0 disables personalisation, 1.0 applies it fully")


class EffectiveProfileRead(BaseModel):
    """Profile that letter generation would use, with where it came from."""

    profile: Optional[SubspecialtyStyleProfileData] = None
    source: StyleSource


class StyleAnalysisRequest(BaseModel):
    force: bool = Field(default=False, description="Run even when too few edits have been recorded")


class StyleAnalysisResponse(BaseModel):
    profile: SubspecialtyStyleProfileData
    analysis: StyleAnalysisResult
    statistics: EditStatistics


class SeedLetterCreate(BaseModel):
    subspecialty: Subspecialty
    letter_text: str = Field(min_length=1, description="Full text of a representative letter")


class SeedLetterRead(BaseModel):
    """Schema for reading a seed letter."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    subspecialty: Subspecialty
    letter_text: str
    analyzed_at: Optional[datetime] = None
    created_at: datetime


class AnalyticsThresholds(BaseModel):
    min_clinicians_required: int
    min_letters_required: int


class StyleAnalyticsList(BaseModel):
    subspecialty: Subspecialty
    analytics: List[StyleAnalyticsAggregateData]
    count: int
    meta: AnalyticsThresholds


class StyleAnalyticsSummaryResponse(BaseModel):
    summary: StyleAnalyticsSummary
    meta: AnalyticsThresholds


class AggregationRequest(BaseModel):
    """Schema for triggering an aggregation run.

    Either name a subspecialty or set ``run_all``. The window defaults to
    the last seven days.
    """

    subspecialty: Optional[Subspecialty] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    run_all: bool = False


class AggregationResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    aggregate: Optional[StyleAnalyticsAggregateData] = None
    processed: Optional[List[Subspecialty]] = None
    skipped: Optional[List[Subspecialty]] = None
    requirements: Optional[AnalyticsThresholds] = None
