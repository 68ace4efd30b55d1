"""
Database entity models.

This package contains all database entity models organized by business domain.
Each module represents either a single table or a small group of tables that
belong to the same business concern.

Modules:
- practices: Practices and their users
- recordings: Consultation audio and transcripts
- documents: Clinical documents used as letter sources
- referrals: Referral documents and their extraction state
- letters: Generated letters and their verification data
- style_profiles: Subspecialty style profiles, style edits, seed letters and
  analytics aggregates
- audit_logs: Audit trail
"""

from . import (
    audit_logs,
    documents,
    letters,
    practices,
    recordings,
    referrals,
    style_profiles,
)
from .audit_logs import AuditLog
from .documents import Document
from .letters import Letter
from .practices import Practice, User
from .recordings import Recording
from .referrals import ReferralDocument
from .style_profiles import StyleAnalyticsAggregate, StyleEdit, StyleSeedLetter, SubspecialtyStyleProfile

__all__ = [
    "audit_logs",
    "documents",
    "letters",
    "practices",
    "recordings",
    "referrals",
    "style_profiles",
    "AuditLog",
    "Document",
    "Letter",
    "Practice",
    "Recording",
    "ReferralDocument",
    "StyleAnalyticsAggregate",
    "StyleEdit",
    "StyleSeedLetter",
    "SubspecialtyStyleProfile",
    "User",
]
