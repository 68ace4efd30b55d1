"""
Referral document entity model.

Referral letters arrive as PDF or text uploads. They go through text
extraction, a fast patient-identifier pass and a full structured extraction
before the clinician applies the result to a consultation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Field

from dictatemed.core.models.domain.enums import FastExtractionStatus, ReferralStatus

from ..base import Base, dump_json, load_json, new_id, utc_now


class ReferralDocumentBase(Base):
    """Base fields for a referral document."""

    user_id: str = Field(foreign_key="users.id", index=True)
    practice_id: str = Field(foreign_key="practices.id", index=True)
    filename: str = Field(description="Original filename")
    mime_type: str = Field(description="application/pdf or text/plain")
    size_bytes: int = Field(default=0, ge=0)
    storage_key: str = Field(description="Object storage key")
    status: ReferralStatus = Field(default=ReferralStatus.UPLOADED, index=True)

    content_text: Optional[str] = Field(default=None, description="Extracted plain text")
    extracted_data: Optional[str] = Field(default=None, description="JSON of the structured extraction")

    fast_extraction_status: Optional[FastExtractionStatus] = Field(default=None)
    fast_extraction_data: Optional[str] = Field(default=None, description="JSON of the fast extraction")
    fast_extraction_started_at: Optional[datetime] = Field(default=None)
    fast_extraction_completed_at: Optional[datetime] = Field(default=None)
    fast_extraction_error: Optional[str] = Field(default=None)

    consultation_id: Optional[str] = Field(default=None, description="Consultation the referral was applied to")
    applied_data: Optional[str] = Field(default=None, description="JSON of the confirmed data")

    processing_error: Optional[str] = Field(default=None)
    processed_at: Optional[datetime] = Field(default=None)


class ReferralDocument(ReferralDocumentBase, table=True):
    """Persistent referral document.

    Table: referral_documents
    """

    __tablename__ = "referral_documents"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    def get_extracted_data(self) -> Optional[Dict[str, Any]]:
        return load_json(self.extracted_data, None)

    def set_extracted_data(self, data: Optional[Dict[str, Any]]) -> None:
        self.extracted_data = dump_json(data) if data is not None else None

    def get_fast_extraction_data(self) -> Optional[Dict[str, Any]]:
        return load_json(self.fast_extraction_data, None)

    def set_fast_extraction_data(self, data: Optional[Dict[str, Any]]) -> None:
        self.fast_extraction_data = dump_json(data) if data is not None else None

    def __repr__(self) -> str:
        return f"ReferralDocument(id={self.id}, filename={self.filename}, status={self.status})"
