"""
Recording entity model.

A recording is the audio captured during a consultation (ambient mode) or a
physician dictation. The audio itself lives in object storage; the row keeps
the storage key, upload state and, once transcribed, the transcript.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Field

from dictatemed.core.models.domain.enums import RecordingMode, RecordingStatus

from ..base import Base, dump_json, load_json, new_id, utc_now


class RecordingBase(Base):
    """Base fields for a recording."""

    user_id: str = Field(foreign_key="users.id", index=True)
    mode: RecordingMode = Field(description="Ambient consultation or dictation")
    status: RecordingStatus = Field(default=RecordingStatus.UPLOADING, index=True)
    content_type: str = Field(default="audio/webm", description="MIME type of the audio")
    storage_key: Optional[str] = Field(default=None, description="Object storage key of the audio")
    duration_seconds: Optional[int] = Field(default=None, description="Audio length once uploaded")
    transcription_job_id: Optional[str] = Field(default=None, description="Provider job reference")
    transcript_text: Optional[str] = Field(default=None, description="Plain transcript text")
    speakers: str = Field(default="[]", description="JSON array of speaker segments")
    processing_error: Optional[str] = Field(default=None)


class Recording(RecordingBase, table=True):
    """Persistent recording.

    Table: recordings
    """

    __tablename__ = "recordings"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    def get_speakers(self) -> List[Dict[str, Any]]:
        """Get speaker segments as a list of dicts."""
        return load_json(self.speakers, [])

    def set_speakers(self, speakers: List[Dict[str, Any]]) -> None:
        self.speakers = dump_json(speakers)

    def __repr__(self) -> str:
        return f"Recording(id={self.id}, mode={self.mode}, status={self.status})"
