"""
Letter entity model.

A letter is drafted by the LLM from a recording, documents and free-text user
input, reviewed by the clinician and finally approved. Verification data
(source anchors, clinical values and hallucination flags) is stored as JSON
text so it travels with the draft.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Field

from dictatemed.core.models.domain.enums import LetterStatus, LetterType, Subspecialty

from ..base import Base, dump_json, load_json, new_id, utc_now


class LetterBase(Base):
    """Base fields for a letter."""

    user_id: str = Field(foreign_key="users.id", index=True)
    recording_id: Optional[str] = Field(default=None, foreign_key="recordings.id")
    document_ids: str = Field(default="[]", description="JSON array of source document ids")
    letter_type: LetterType = Field(index=True)
    status: LetterStatus = Field(default=LetterStatus.GENERATING, index=True)
    subspecialty: Optional[Subspecialty] = Field(default=None)

    content_draft: Optional[str] = Field(default=None, description="Generated text as last edited")
    content_final: Optional[str] = Field(default=None, description="Approved text")

    source_anchors: str = Field(default="[]", description="JSON array of source anchors")
    clinical_values: str = Field(default="[]", description="JSON array of extracted clinical values")
    hallucination_flags: str = Field(default="[]", description="JSON array of hallucination flags")
    hallucination_risk_score: Optional[int] = Field(default=None, ge=0, le=100)
    verification_rate: Optional[float] = Field(default=None, description="Percentage of clinical values with a source anchor")
    style_confidence: Optional[float] = Field(default=None, description="Confidence of the applied style profile")

    model_id: Optional[str] = Field(default=None, description="Model that drafted the letter")
    input_tokens: Optional[int] = Field(default=None)
    output_tokens: Optional[int] = Field(default=None)
    generation_duration_ms: Optional[int] = Field(default=None)
    generation_error: Optional[str] = Field(default=None)

    review_started_at: Optional[datetime] = Field(default=None)
    approved_at: Optional[datetime] = Field(default=None)
    approved_by: Optional[str] = Field(default=None)
    review_duration_ms: Optional[int] = Field(default=None)
    content_diff: Optional[str] = Field(default=None, description="JSON diff between draft and final")


class Letter(LetterBase, table=True):
    """Persistent letter.

    Table: letters
    """

    __tablename__ = "letters"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    def get_document_ids(self) -> List[str]:
        return load_json(self.document_ids, [])

    def set_document_ids(self, document_ids: List[str]) -> None:
        self.document_ids = dump_json(document_ids)

    def get_source_anchors(self) -> List[Dict[str, Any]]:
        return load_json(self.source_anchors, [])

    def set_source_anchors(self, anchors: List[Dict[str, Any]]) -> None:
        self.source_anchors = dump_json(anchors)

    def get_clinical_values(self) -> List[Dict[str, Any]]:
        return load_json(self.clinical_values, [])

    def set_clinical_values(self, values: List[Dict[str, Any]]) -> None:
        self.clinical_values = dump_json(values)

    def get_hallucination_flags(self) -> List[Dict[str, Any]]:
        return load_json(self.hallucination_flags, [])

    def set_hallucination_flags(self, flags: List[Dict[str, Any]]) -> None:
        self.hallucination_flags = dump_json(flags)

    def get_content_diff(self) -> Optional[Dict[str, Any]]:
        return load_json(self.content_diff, None)

    def set_content_diff(self, diff: Optional[Dict[str, Any]]) -> None:
        self.content_diff = dump_json(diff) if diff is not None else None

    def __repr__(self) -> str:
        return f"Letter(id={self.id}, type={self.letter_type}, status={self.status})"
