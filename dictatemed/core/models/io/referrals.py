"""
Referral document I/O models for API requests and responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.enums import FastExtractionStatus, ReferralStatus
from ..domain.referrals import MAX_REFERRAL_FILE_SIZE, FastExtractedData, ReferralExtractedData


class ReferralCreate(BaseModel):
    """Schema for registering a referral upload."""

    filename: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(description="application/pdf or text/plain")
    size_bytes: int = Field(gt=0, le=MAX_REFERRAL_FILE_SIZE)


class ReferralCreateResult(BaseModel):
    id: str
    upload_url: str
    expires_at: datetime


class ReferralBatchCreate(BaseModel):
    files: List[ReferralCreate]


class BatchFileResult(ReferralCreateResult):
    filename: str


class BatchFileError(BaseModel):
    filename: str
    error: str


class ReferralBatchResult(BaseModel):
    """Per-file outcome of a batch registration."""

    files: List[BatchFileResult] = Field(default_factory=list)
    errors: List[BatchFileError] = Field(default_factory=list)


class ReferralConfirm(BaseModel):
    size_bytes: int = Field(gt=0, le=MAX_REFERRAL_FILE_SIZE)


class ReferralRead(BaseModel):
    """Schema for reading a referral document."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    practice_id: str
    filename: str
    mime_type: str
    size_bytes: int
    status: ReferralStatus
    content_text: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None
    fast_extraction_status: Optional[FastExtractionStatus] = None
    fast_extraction_data: Optional[Dict[str, Any]] = None
    consultation_id: Optional[str] = None
    processing_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    download_url: Optional[str] = None


class ReferralList(BaseModel):
    documents: List[ReferralRead]
    total: int
    page: int
    limit: int
    has_more: bool


class TextExtractionResult(BaseModel):
    id: str
    status: ReferralStatus
    text_length: int
    preview: str = Field(description="First 500 characters of the extracted text")


class FastExtractionResult(BaseModel):
    document_id: str
    status: FastExtractionStatus
    data: Optional[FastExtractedData] = None
    error: Optional[str] = None


class StructuredExtractionResult(BaseModel):
    id: str
    status: ReferralStatus
    extracted_data: ReferralExtractedData


class AppliedPatient(BaseModel):
    full_name: str = Field(min_length=1)
    date_of_birth: Optional[str] = None
    sex: Optional[str] = Field(default=None, pattern="^(male|female|other)$")
    medicare: Optional[str] = None
    mrn: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class AppliedContact(BaseModel):
    full_name: str = Field(min_length=1)
    practice_name: Optional[str] = None
    specialty: Optional[str] = None
    organisation: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None


class AppliedReferralContext(BaseModel):
    reason_for_referral: Optional[str] = None
    key_problems: Optional[List[str]] = None


class ApplyReferralRequest(BaseModel):
    """Clinician-confirmed data to apply to a consultation."""

    consultation_id: Optional[str] = None
    patient: AppliedPatient
    gp: Optional[AppliedContact] = None
    referrer: Optional[AppliedContact] = None
    referral_context: Optional[AppliedReferralContext] = None


class ApplyReferralResult(BaseModel):
    id: str
    status: ReferralStatus
    consultation_id: Optional[str] = None
    applied_at: datetime


class ReferralProcessingStatus(BaseModel):
    """Progress of a referral through upload and extraction."""

    id: str
    status: ReferralStatus
    fast_extraction_status: FastExtractionStatus
    fast_extraction_data: Optional[Dict[str, Any]] = None
    full_extraction_status: FastExtractionStatus
    error: Optional[str] = None
