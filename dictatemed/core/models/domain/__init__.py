"""
Domain models.

Pydantic models and enums describing letters, style profiles and referral
extraction independently of storage and transport.
"""

from .enums import (
    ClinicalValueType,
    DocumentStatus,
    DocumentType,
    FastExtractionStatus,
    FlagSeverity,
    LetterStatus,
    LetterType,
    ModelPreference,
    RecordingMode,
    RecordingStatus,
    ReferralStatus,
    RiskLevel,
    StyleSource,
    Subspecialty,
    UserRole,
)
from .letters import ClinicalValue, HallucinationFlag, LetterSources, PatientPHI, SourceAnchor
from .referrals import FastExtractedData, FieldConfidence, ReferralExtractedData
from .style import ConditioningOverrides, StyleConditioningConfig, SubspecialtyStyleHints, SubspecialtyStyleProfileData

__all__ = [
    "ClinicalValueType",
    "DocumentStatus",
    "DocumentType",
    "FastExtractionStatus",
    "FlagSeverity",
    "LetterStatus",
    "LetterType",
    "ModelPreference",
    "RecordingMode",
    "RecordingStatus",
    "ReferralStatus",
    "RiskLevel",
    "StyleSource",
    "Subspecialty",
    "UserRole",
    "ClinicalValue",
    "HallucinationFlag",
    "LetterSources",
    "PatientPHI",
    "SourceAnchor",
    "FastExtractedData",
    "FieldConfidence",
    "ReferralExtractedData",
    "ConditioningOverrides",
    "StyleConditioningConfig",
    "SubspecialtyStyleHints",
    "SubspecialtyStyleProfileData",
]
