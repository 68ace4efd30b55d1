"""
Repositories.

One repository per entity (grouped by business concern), all built on
``AsyncBaseRepository`` over an ``AsyncSession``.
"""

from .audit_logs import AuditLogRepository
from .base import AsyncBaseRepository, QueryBuilder
from .documents import DocumentRepository
from .letters import LetterRepository
from .practices import PracticeRepository, UserRepository
from .recordings import RecordingRepository
from .referrals import ReferralDocumentRepository
from .style_profiles import (
    StyleAnalyticsRepository,
    StyleEditRepository,
    StyleProfileRepository,
    StyleSeedLetterRepository,
)

__all__ = [
    "AsyncBaseRepository",
    "AuditLogRepository",
    "DocumentRepository",
    "LetterRepository",
    "PracticeRepository",
    "QueryBuilder",
    "RecordingRepository",
    "ReferralDocumentRepository",
    "StyleAnalyticsRepository",
    "StyleEditRepository",
    "StyleProfileRepository",
    "StyleSeedLetterRepository",
    "UserRepository",
]
