"""Domain enums shared by entities, services and API schemas."""

from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    """Role of a user inside their practice."""

    ADMIN = "ADMIN"  # Manages practice details and members.
    SPECIALIST = "SPECIALIST"


class Subspecialty(str, Enum):
    """Cardiology subspecialties a style profile can be scoped to."""

    GENERAL_CARDIOLOGY = "GENERAL_CARDIOLOGY"
    INTERVENTIONAL = "INTERVENTIONAL"
    STRUCTURAL = "STRUCTURAL"
    ELECTROPHYSIOLOGY = "ELECTROPHYSIOLOGY"
    IMAGING = "IMAGING"
    HEART_FAILURE = "HEART_FAILURE"
    CARDIAC_SURGERY = "CARDIAC_SURGERY"


class LetterType(str, Enum):
    """Kinds of letters the generator can draft."""

    NEW_PATIENT = "NEW_PATIENT"
    FOLLOW_UP = "FOLLOW_UP"
    ANGIOGRAM_PROCEDURE = "ANGIOGRAM_PROCEDURE"
    ECHO_REPORT = "ECHO_REPORT"


class LetterStatus(str, Enum):
    """Lifecycle status of a letter."""

    GENERATING = "GENERATING"
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    FAILED = "FAILED"


class ModelPreference(str, Enum):
    """Clinician preference when choosing a generation model."""

    QUALITY = "quality"
    BALANCED = "balanced"
    COST = "cost"


class RecordingMode(str, Enum):
    """How a consultation was captured."""

    AMBIENT = "AMBIENT"  # Whole consultation, multiple speakers.
    DICTATION = "DICTATION"  # Physician dictating alone.


class RecordingStatus(str, Enum):
    """Lifecycle status of a recording."""

    UPLOADING = "UPLOADING"
    UPLOADED = "UPLOADED"
    TRANSCRIBING = "TRANSCRIBING"
    TRANSCRIBED = "TRANSCRIBED"
    FAILED = "FAILED"


class DocumentType(str, Enum):
    """Clinical document categories used as letter sources."""

    ECHO_REPORT = "ECHO_REPORT"
    ANGIOGRAM_REPORT = "ANGIOGRAM_REPORT"
    ECG_REPORT = "ECG_REPORT"
    REFERRAL = "REFERRAL"
    OTHER = "OTHER"


class DocumentStatus(str, Enum):
    """Lifecycle status of a clinical document."""

    UPLOADING = "UPLOADING"
    UPLOADED = "UPLOADED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class ReferralStatus(str, Enum):
    """Lifecycle status of a referral document."""

    UPLOADED = "UPLOADED"
    TEXT_EXTRACTED = "TEXT_EXTRACTED"
    EXTRACTED = "EXTRACTED"
    APPLIED = "APPLIED"
    FAILED = "FAILED"


class FastExtractionStatus(str, Enum):
    """Status of the quick patient-identifier extraction."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class StyleSource(str, Enum):
    """Where the effective style profile came from."""

    SUBSPECIALTY = "subspecialty"
    GLOBAL = "global"
    DEFAULT = "default"


class VerbosityLevel(str, Enum):
    BRIEF = "brief"
    NORMAL = "normal"
    DETAILED = "detailed"


class FormalityLevel(str, Enum):
    VERY_FORMAL = "very-formal"
    FORMAL = "formal"
    NEUTRAL = "neutral"
    CASUAL = "casual"


class StyleCategory(str, Enum):
    """Greeting and closing register."""

    FORMAL = "formal"
    CASUAL = "casual"
    MIXED = "mixed"


class ParagraphStructure(str, Enum):
    LONG = "long"
    SHORT = "short"
    MIXED = "mixed"


class TerminologyLevel(str, Enum):
    SPECIALIST = "specialist"
    LAY = "lay"
    MIXED = "mixed"


class LetterSectionType(str, Enum):
    """Sections recognised when parsing letters for style learning."""

    GREETING = "greeting"
    INTRODUCTION = "introduction"
    HISTORY = "history"
    PRESENTING_COMPLAINT = "presenting_complaint"
    PAST_MEDICAL_HISTORY = "past_medical_history"
    MEDICATIONS = "medications"
    FAMILY_HISTORY = "family_history"
    SOCIAL_HISTORY = "social_history"
    EXAMINATION = "examination"
    INVESTIGATIONS = "investigations"
    IMPRESSION = "impression"
    PLAN = "plan"
    FOLLOW_UP = "follow_up"
    CLOSING = "closing"
    SIGNOFF = "signoff"
    OTHER = "other"


class ClinicalValueType(str, Enum):
    MEASUREMENT = "measurement"
    DIAGNOSIS = "diagnosis"
    MEDICATION = "medication"
    PROCEDURE = "procedure"


class FlagSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    """Hallucination risk classification for a letter."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
