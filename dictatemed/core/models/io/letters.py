"""
Letter I/O models for API requests and responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.enums import LetterStatus, LetterType, ModelPreference, StyleSource, Subspecialty
from ..domain.letters import ClinicalValue, ContentDiff, HallucinationFlag, PatientPHI, SourceAnchor
from ..domain.style import ConditioningOverrides


class LetterGenerateRequest(BaseModel):
    """Schema for generating a letter draft."""

    letter_type: LetterType
    recording_id: Optional[str] = Field(default=None, description="Transcribed recording to draw from")
    document_ids: List[str] = Field(default_factory=list, description="Processed documents to draw from")
    user_input: Optional[str] = Field(default=None, description="Free-text notes from the clinician")
    patient: Optional[PatientPHI] = Field(default=None, description="Identifiers replaced by tokens before generation")
    subspecialty: Optional[Subspecialty] = None
    model_preference: Optional[ModelPreference] = None
    style_overrides: Optional[ConditioningOverrides] = None


class LetterRead(BaseModel):
    """Schema for reading a letter."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    recording_id: Optional[str] = None
    document_ids: List[str] = Field(default_factory=list)
    letter_type: LetterType
    status: LetterStatus
    subspecialty: Optional[Subspecialty] = None
    content_draft: Optional[str] = None
    content_final: Optional[str] = None
    source_anchors: List[SourceAnchor] = Field(default_factory=list)
    clinical_values: List[ClinicalValue] = Field(default_factory=list)
    hallucination_flags: List[HallucinationFlag] = Field(default_factory=list)
    hallucination_risk_score: Optional[int] = None
    verification_rate: Optional[float] = None
    style_confidence: Optional[float] = None
    model_id: Optional[str] = None
    generation_error: Optional[str] = None
    review_started_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    review_duration_ms: Optional[int] = None
    content_diff: Optional[ContentDiff] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, letter: Any) -> "LetterRead":
        """Build from a ``Letter`` row, decoding its JSON columns."""
        return cls(
            **{
                name: getattr(letter, name)
                for name in cls.model_fields
                if name not in ("document_ids", "source_anchors", "clinical_values", "hallucination_flags", "content_diff")
            },
            document_ids=letter.get_document_ids(),
            source_anchors=letter.get_source_anchors(),
            clinical_values=letter.get_clinical_values(),
            hallucination_flags=letter.get_hallucination_flags(),
            content_diff=letter.get_content_diff(),
        )


class LetterSummary(BaseModel):
    """Schema for a letter in list results."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    letter_type: LetterType
    status: LetterStatus
    subspecialty: Optional[Subspecialty] = None
    hallucination_risk_score: Optional[int] = None
    approved_at: Optional[datetime] = None
    created_at: datetime


class LetterList(BaseModel):
    letters: List[LetterSummary]
    total: int
    page: int
    limit: int
    has_more: bool


class LetterContentUpdate(BaseModel):
    content: str = Field(min_length=1, description="Edited draft text")


class GenerationResult(BaseModel):
    """Outcome of a successful generation."""

    letter: LetterRead
    model_reason: str
    style_source: StyleSource
    risk_level: str
    approval_recommendation: Dict[str, Any]


class LetterApproveRequest(BaseModel):
    """Schema for approving a letter."""

    final_content: str = Field(min_length=1)
    verified_value_ids: List[str] = Field(default_factory=list)
    dismissed_flag_ids: List[str] = Field(default_factory=list)
    review_duration_ms: Optional[int] = Field(default=None, ge=0, description="Measured by the client if known")


class ApprovalResult(BaseModel):
    letter_id: str
    status: LetterStatus
    approved_at: datetime
    warnings: List[str] = Field(default_factory=list)


class ApprovalRequirements(BaseModel):
    critical_values_verified: bool
    critical_flags_addressed: bool
    verification_rate_sufficient: bool


class ApprovalStatus(BaseModel):
    """What still blocks approval of a letter."""

    can_approve: bool
    requirements: ApprovalRequirements
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
