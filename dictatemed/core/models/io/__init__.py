"""
I/O models for API requests and responses.

These schemas define the contract between the API routers and clients and
are kept separate from the database entities.

Modules:
- letters: generation, review and approval
- style: subspecialty style profiles and seed letters
- referrals: referral upload and extraction
- recordings / documents: letter source uploads
- practice: practice details and user settings
"""

from .documents import DocumentConfirm, DocumentCreate, DocumentCreateResult, DocumentList, DocumentRead
from .letters import (
    ApprovalResult,
    ApprovalStatus,
    GenerationResult,
    LetterApproveRequest,
    LetterContentUpdate,
    LetterGenerateRequest,
    LetterList,
    LetterRead,
)
from .practice import PracticeRead, PracticeUpdate, PracticeUserRead, UserSettings
from .recordings import (
    RecordingConfirm,
    RecordingCreate,
    RecordingCreateResult,
    RecordingList,
    RecordingRead,
    TranscriptPayload,
)
from .referrals import (
    ApplyReferralRequest,
    ApplyReferralResult,
    FastExtractionResult,
    ReferralBatchCreate,
    ReferralBatchResult,
    ReferralConfirm,
    ReferralCreate,
    ReferralCreateResult,
    ReferralList,
    ReferralProcessingStatus,
    ReferralRead,
    StructuredExtractionResult,
    TextExtractionResult,
)
from .style import (
    EffectiveProfileRead,
    LearningStrengthUpdate,
    ProfileOperationResponse,
    SeedLetterCreate,
    SeedLetterRead,
    StyleAnalysisRequest,
    StyleAnalysisResponse,
    StyleProfileCreate,
    StyleProfileList,
    StyleProfileUpdate,
)

__all__ = [
    "DocumentConfirm",
    "DocumentCreate",
    "DocumentCreateResult",
    "DocumentList",
    "DocumentRead",
    "ApprovalResult",
    "ApprovalStatus",
    "GenerationResult",
    "LetterApproveRequest",
    "LetterContentUpdate",
    "LetterGenerateRequest",
    "LetterList",
    "LetterRead",
    "PracticeRead",
    "PracticeUpdate",
    "PracticeUserRead",
    "UserSettings",
    "RecordingConfirm",
    "RecordingCreate",
    "RecordingCreateResult",
    "RecordingList",
    "RecordingRead",
    "TranscriptPayload",
    "ApplyReferralRequest",
    "ApplyReferralResult",
    "FastExtractionResult",
    "ReferralBatchCreate",
    "ReferralBatchResult",
    "ReferralConfirm",
    "ReferralCreate",
    "ReferralCreateResult",
    "ReferralList",
    "ReferralProcessingStatus",
    "ReferralRead",
    "StructuredExtractionResult",
    "TextExtractionResult",
    "EffectiveProfileRead",
    "LearningStrengthUpdate",
    "ProfileOperationResponse",
    "SeedLetterCreate",
    "SeedLetterRead",
    "StyleAnalysisRequest",
    "StyleAnalysisResponse",
    "StyleProfileCreate",
    "StyleProfileList",
    "StyleProfileUpdate",
]
