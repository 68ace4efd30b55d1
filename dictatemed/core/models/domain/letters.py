"""Letter verification domain models.

Source anchors, clinical values, hallucination flags and the content diff are
computed by the letter pipeline and stored as JSON on the letter row. The
source models describe what the generator is allowed to draw from.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .enums import ClinicalValueType, FlagSeverity, RecordingMode


class SourceAnchor(BaseModel):
    """Links a span of the generated text to the source that supports it."""

    id: str
    segment_text: str
    start_index: int
    end_index: int
    source_type: str = Field(description="transcript, document or user-input")
    source_id: str
    source_excerpt: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClinicalValue(BaseModel):
    """A clinical fact in the letter that may need clinician verification."""

    id: str
    type: ClinicalValueType
    name: str
    value: str
    unit: Optional[str] = None
    source_anchor_id: Optional[str] = None
    verified: bool = False
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None


class HallucinationFlag(BaseModel):
    """A statement in the letter that may not be supported by the sources."""

    id: str
    segment_text: str
    start_index: int
    end_index: int
    reason: str
    severity: FlagSeverity
    dismissed: bool = False
    dismissed_at: Optional[datetime] = None
    dismissed_by: Optional[str] = None
    dismiss_reason: Optional[str] = None


class TextChange(BaseModel):
    type: str = Field(description="addition, deletion or modification")
    original_text: Optional[str] = None
    new_text: Optional[str] = None
    index: int
    timestamp: datetime
    user_id: str = ""


class ContentDiff(BaseModel):
    """Line-level changes between the draft and the approved letter."""

    additions: List[TextChange] = Field(default_factory=list)
    deletions: List[TextChange] = Field(default_factory=list)
    modifications: List[TextChange] = Field(default_factory=list)


class SpeakerSegment(BaseModel):
    speaker: str
    text: str
    timestamp: int = Field(default=0, description="Seconds from the start of the recording")


class TranscriptSource(BaseModel):
    id: str
    text: str
    mode: RecordingMode
    speakers: Optional[List[SpeakerSegment]] = None


class DocumentSource(BaseModel):
    id: str
    type: str
    name: str
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    raw_text: Optional[str] = None


class UserInputSource(BaseModel):
    id: str = "user-input"
    text: str


class LetterSources(BaseModel):
    """Everything the generator may cite."""

    transcript: Optional[TranscriptSource] = None
    documents: List[DocumentSource] = Field(default_factory=list)
    user_input: Optional[UserInputSource] = None

    @property
    def count(self) -> int:
        return (1 if self.transcript else 0) + len(self.documents) + (1 if self.user_input else 0)


class PatientPHI(BaseModel):
    """Patient identifiers that are replaced by tokens before any LLM call."""

    name: str
    date_of_birth: str
    medicare_number: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None


class ModelSelection(BaseModel):
    model_id: str
    reason: str
    complexity_score: int
    estimated_input_tokens: int
    estimated_output_tokens: int
    max_tokens: int
    temperature: float


class HallucinationRisk(BaseModel):
    score: int
    level: str
    flag_count: int
    critical_count: int


class ApprovalRecommendation(BaseModel):
    should_approve: bool
    reason: str
    action_required: str


class ApprovalValidation(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
