"""
Clinical document I/O models for API requests and responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.enums import DocumentStatus, DocumentType
from ..domain.referrals import MAX_REFERRAL_FILE_SIZE

ALLOWED_DOCUMENT_TYPES = ("application/pdf", "text/plain")
MAX_DOCUMENT_SIZE = MAX_REFERRAL_FILE_SIZE


class DocumentCreate(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    mime_type: str
    size_bytes: int = Field(gt=0, le=MAX_DOCUMENT_SIZE)
    document_type: DocumentType = DocumentType.OTHER


class DocumentCreateResult(BaseModel):
    id: str
    upload_url: str
    expires_at: datetime


class DocumentConfirm(BaseModel):
    size_bytes: Optional[int] = Field(default=None, gt=0, le=MAX_DOCUMENT_SIZE)


class DocumentRead(BaseModel):
    """Schema for reading a clinical document."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    filename: str
    mime_type: str
    size_bytes: int
    document_type: DocumentType
    status: DocumentStatus
    extracted_text: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None
    processing_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    download_url: Optional[str] = None


class DocumentList(BaseModel):
    documents: List[DocumentRead]
    total: int
    page: int
    limit: int
    has_more: bool
