"""
Recording I/O models for API requests and responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.enums import RecordingMode, RecordingStatus
from ..domain.letters import SpeakerSegment

ALLOWED_AUDIO_TYPES = ("audio/webm", "audio/mp4", "audio/mpeg", "audio/wav", "audio/ogg")


class RecordingCreate(BaseModel):
    """Schema for starting a recording upload."""

    mode: RecordingMode
    content_type: str = Field(default="audio/webm", description="MIME type of the audio to upload")


class RecordingCreateResult(BaseModel):
    id: str
    upload_url: str
    expires_at: datetime


class RecordingConfirm(BaseModel):
    duration_seconds: Optional[int] = Field(default=None, ge=0)


class TranscriptPayload(BaseModel):
    """Transcript delivered by the transcription provider."""

    text: str = Field(min_length=1)
    speakers: List[SpeakerSegment] = Field(default_factory=list)
    job_id: Optional[str] = None


class RecordingRead(BaseModel):
    """Schema for reading a recording."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    mode: RecordingMode
    status: RecordingStatus
    content_type: str
    duration_seconds: Optional[int] = None
    transcription_job_id: Optional[str] = None
    transcript_text: Optional[str] = None
    speakers: List[SpeakerSegment] = Field(default_factory=list)
    processing_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    download_url: Optional[str] = None


class RecordingList(BaseModel):
    recordings: List[RecordingRead]
    total: int
    page: int
    limit: int
    has_more: bool
