"""Referral extraction domain models and upload limits."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

ALLOWED_REFERRAL_MIME_TYPES = ("application/pdf", "text/plain")

# 10 MB
MAX_REFERRAL_FILE_SIZE = 10 * 1024 * 1024

# Below this, extracted fields are shown with a warning.
LOW_CONFIDENCE_THRESHOLD = 0.7

HIGH_FIELD_CONFIDENCE = 0.9


def is_allowed_mime_type(mime_type: str) -> bool:
    return mime_type in ALLOWED_REFERRAL_MIME_TYPES


def is_file_size_valid(size_bytes: int) -> bool:
    return 0 < size_bytes <= MAX_REFERRAL_FILE_SIZE


def format_file_size(size_bytes: int) -> str:
    """Human readable size, e.g. ``"1.5 MB"``."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


class ExtractedPatientInfo(BaseModel):
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = Field(default=None, description="ISO date YYYY-MM-DD")
    sex: Optional[str] = None
    medicare: Optional[str] = None
    mrn: Optional[str] = None
    urn: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    confidence: float = 0.0


class ExtractedGPInfo(BaseModel):
    full_name: Optional[str] = None
    practice_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None
    provider_number: Optional[str] = None
    confidence: float = 0.0


class ExtractedReferrerInfo(BaseModel):
    full_name: Optional[str] = None
    specialty: Optional[str] = None
    organisation: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None
    confidence: float = 0.0


class ExtractedReferralContext(BaseModel):
    reason_for_referral: Optional[str] = None
    key_problems: Optional[List[str]] = None
    investigations_mentioned: Optional[List[str]] = None
    medications_mentioned: Optional[List[str]] = None
    urgency: Optional[str] = None
    referral_date: Optional[str] = None
    confidence: float = 0.0


class ReferralExtractedData(BaseModel):
    """Full structured extraction of a referral letter."""

    patient: ExtractedPatientInfo
    gp: ExtractedGPInfo
    referrer: Optional[ExtractedReferrerInfo] = None
    referral_context: ExtractedReferralContext
    overall_confidence: float
    extracted_at: datetime
    model_used: str


class FieldConfidence(BaseModel):
    """A single extracted value with its confidence and display level."""

    value: Optional[str] = None
    confidence: float = 0.0
    level: str = "low"


def create_field_confidence(value: Optional[str], confidence: float) -> FieldConfidence:
    if confidence >= HIGH_FIELD_CONFIDENCE:
        level = "high"
    elif confidence >= LOW_CONFIDENCE_THRESHOLD:
        level = "medium"
    else:
        level = "low"
    return FieldConfidence(value=value, confidence=confidence, level=level)


class FastExtractedData(BaseModel):
    """Patient identifiers pulled quickly so the consultation can start."""

    patient_name: FieldConfidence
    date_of_birth: FieldConfidence
    mrn: FieldConfidence
    overall_confidence: float
    extracted_at: datetime
    model_used: str
    processing_time_ms: int
