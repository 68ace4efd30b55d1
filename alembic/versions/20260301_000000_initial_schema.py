"""Initial schema for DictateMED

Revision ID: 20260301_000000
Revises: None
Create Date: 2026-03-01 00:00:00.000000

Creates the practice, user, recording, document, letter, style learning,
referral and audit tables.

Revision format: YYYYMMDD_HHMMSS_description

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20260301_000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SUBSPECIALTIES = (
    "GENERAL_CARDIOLOGY",
    "INTERVENTIONAL",
    "STRUCTURAL",
    "ELECTROPHYSIOLOGY",
    "IMAGING",
    "HEART_FAILURE",
    "CARDIAC_SURGERY",
)

ENUMS = {
    "userrole": ("ADMIN", "SPECIALIST"),
    "subspecialty": SUBSPECIALTIES,
    "recordingmode": ("AMBIENT", "DICTATION"),
    "recordingstatus": ("UPLOADING", "UPLOADED", "TRANSCRIBING", "TRANSCRIBED", "FAILED"),
    "documenttype": ("ECHO_REPORT", "ANGIOGRAM_REPORT", "ECG_REPORT", "REFERRAL", "OTHER"),
    "documentstatus": ("UPLOADING", "UPLOADED", "PROCESSING", "PROCESSED", "FAILED"),
    "lettertype": ("NEW_PATIENT", "FOLLOW_UP", "ANGIOGRAM_PROCEDURE", "ECHO_REPORT"),
    "letterstatus": ("GENERATING", "DRAFT", "IN_REVIEW", "APPROVED", "FAILED"),
    "referralstatus": ("UPLOADED", "TEXT_EXTRACTED", "EXTRACTED", "APPLIED", "FAILED"),
    "fastextractionstatus": ("PENDING", "PROCESSING", "COMPLETE", "FAILED"),
}


def _enum(name: str) -> ENUM:
    return ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps(with_deleted: bool = False) -> list:
    columns = [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]
    if with_deleted:
        columns.append(sa.Column("deleted_at", sa.DateTime(), nullable=True))
    return columns


def upgrade() -> None:
    """Create all tables."""
    bind = op.get_bind()
    for name, values in ENUMS.items():
        ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "practices",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("letterhead", sa.Text(), nullable=True),
        sa.Column("settings", sa.Text(), nullable=False, server_default="{}"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("role", _enum("userrole"), nullable=False),
        sa.Column("practice_id", sa.String(64), sa.ForeignKey("practices.id"), nullable=False),
        sa.Column("subspecialties", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("style_profile", sa.Text(), nullable=True),
        sa.Column("settings", sa.Text(), nullable=False, server_default="{}"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.Index("ix_users_practice_id", "practice_id"),
    )

    op.create_table(
        "recordings",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("mode", _enum("recordingmode"), nullable=False),
        sa.Column("status", _enum("recordingstatus"), nullable=False),
        sa.Column("content_type", sa.String(64), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("transcription_job_id", sa.String(128), nullable=True),
        sa.Column("transcript_text", sa.Text(), nullable=True),
        sa.Column("speakers", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        *_timestamps(with_deleted=True),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_recordings_user_id", "user_id"),
        sa.Index("ix_recordings_status", "status"),
        sa.Index("ix_recordings_created_at", "created_at"),
        sa.Index("ix_recordings_deleted_at", "deleted_at"),
    )

    op.create_table(
        "documents",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(128), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("document_type", _enum("documenttype"), nullable=False),
        sa.Column("status", _enum("documentstatus"), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=True),
        sa.Column("extracted_text", sa.Text(), nullable=True),
        sa.Column("extracted_data", sa.Text(), nullable=True),
        sa.Column("processing_error", sa.Text(), nullable=True),
        *_timestamps(with_deleted=True),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_documents_user_id", "user_id"),
        sa.Index("ix_documents_status", "status"),
        sa.Index("ix_documents_created_at", "created_at"),
        sa.Index("ix_documents_deleted_at", "deleted_at"),
    )

    op.create_table(
        "letters",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("recording_id", sa.String(64), sa.ForeignKey("recordings.id"), nullable=True),
        sa.Column("document_ids", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("letter_type", _enum("lettertype"), nullable=False),
        sa.Column("status", _enum("letterstatus"), nullable=False),
        sa.Column("subspecialty", _enum("subspecialty"), nullable=True),
        sa.Column("content_draft", sa.Text(), nullable=True),
        sa.Column("content_final", sa.Text(), nullable=True),
        sa.Column("source_anchors", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("clinical_values", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("hallucination_flags", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("hallucination_risk_score", sa.Integer(), nullable=True),
        sa.Column("verification_rate", sa.Float(), nullable=True),
        sa.Column("style_confidence", sa.Float(), nullable=True),
        sa.Column("model_id", sa.String(128), nullable=True),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("generation_duration_ms", sa.Integer(), nullable=True),
        sa.Column("generation_error", sa.Text(), nullable=True),
        sa.Column("review_started_at", sa.DateTime(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("review_duration_ms", sa.Integer(), nullable=True),
        sa.Column("content_diff", sa.Text(), nullable=True),
        *_timestamps(with_deleted=True),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_letters_user_id", "user_id"),
        sa.Index("ix_letters_letter_type", "letter_type"),
        sa.Index("ix_letters_status", "status"),
        sa.Index("ix_letters_created_at", "created_at"),
        sa.Index("ix_letters_deleted_at", "deleted_at"),
    )

    op.create_table(
        "style_profiles",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("subspecialty", _enum("subspecialty"), nullable=False),
        sa.Column("section_order", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("section_inclusion", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("section_verbosity", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("phrasing_preferences", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("avoided_phrases", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("vocabulary_map", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("terminology_level", sa.String(32), nullable=True),
        sa.Column("greeting_style", sa.String(32), nullable=True),
        sa.Column("closing_style", sa.String(32), nullable=True),
        sa.Column("signoff_template", sa.Text(), nullable=True),
        sa.Column("formality_level", sa.String(32), nullable=True),
        sa.Column("paragraph_structure", sa.String(32), nullable=True),
        sa.Column("confidence", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("learning_strength", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("total_edits_analyzed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_analyzed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "subspecialty", name="uq_style_profiles_user_subspecialty"),
        sa.Index("ix_style_profiles_user_id", "user_id"),
        sa.Index("ix_style_profiles_subspecialty", "subspecialty"),
    )

    op.create_table(
        "style_edits",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("letter_id", sa.String(64), sa.ForeignKey("letters.id"), nullable=True),
        sa.Column("subspecialty", _enum("subspecialty"), nullable=True),
        sa.Column("section_type", sa.String(64), nullable=False),
        sa.Column("edit_type", sa.String(16), nullable=False),
        sa.Column("before_text", sa.Text(), nullable=True),
        sa.Column("after_text", sa.Text(), nullable=True),
        sa.Column("character_changes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("word_changes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_style_edits_user_id", "user_id"),
        sa.Index("ix_style_edits_letter_id", "letter_id"),
        sa.Index("ix_style_edits_subspecialty", "subspecialty"),
        sa.Index("ix_style_edits_created_at", "created_at"),
    )

    op.create_table(
        "style_seed_letters",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("subspecialty", _enum("subspecialty"), nullable=False),
        sa.Column("letter_text", sa.Text(), nullable=False),
        sa.Column("analyzed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_style_seed_letters_user_id", "user_id"),
        sa.Index("ix_style_seed_letters_subspecialty", "subspecialty"),
    )

    op.create_table(
        "style_analytics_aggregates",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("subspecialty", _enum("subspecialty"), nullable=False),
        sa.Column("period", sa.String(16), nullable=False),
        sa.Column("common_additions", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("common_deletions", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("section_order_patterns", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("phrasing_patterns", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("sample_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subspecialty", "period", name="uq_style_analytics_subspecialty_period"),
        sa.Index("ix_style_analytics_aggregates_subspecialty", "subspecialty"),
        sa.Index("ix_style_analytics_aggregates_created_at", "created_at"),
    )

    op.create_table(
        "referral_documents",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("practice_id", sa.String(64), sa.ForeignKey("practices.id"), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(128), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("status", _enum("referralstatus"), nullable=False),
        sa.Column("content_text", sa.Text(), nullable=True),
        sa.Column("extracted_data", sa.Text(), nullable=True),
        sa.Column("fast_extraction_status", _enum("fastextractionstatus"), nullable=True),
        sa.Column("fast_extraction_data", sa.Text(), nullable=True),
        sa.Column("fast_extraction_started_at", sa.DateTime(), nullable=True),
        sa.Column("fast_extraction_completed_at", sa.DateTime(), nullable=True),
        sa.Column("fast_extraction_error", sa.Text(), nullable=True),
        sa.Column("consultation_id", sa.String(64), nullable=True),
        sa.Column("applied_data", sa.Text(), nullable=True),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_referral_documents_user_id", "user_id"),
        sa.Index("ix_referral_documents_practice_id", "practice_id"),
        sa.Index("ix_referral_documents_status", "status"),
        sa.Index("ix_referral_documents_created_at", "created_at"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=False),
        sa.Column("resource_id", sa.String(128), nullable=True),
        sa.Column("details", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_audit_logs_user_id", "user_id"),
        sa.Index("ix_audit_logs_action", "action"),
        sa.Index("ix_audit_logs_resource_id", "resource_id"),
        sa.Index("ix_audit_logs_created_at", "created_at"),
    )


def downgrade() -> None:
    """Drop all tables and enum types."""
    for table in (
        "audit_logs",
        "referral_documents",
        "style_analytics_aggregates",
        "style_seed_letters",
        "style_edits",
        "style_profiles",
        "letters",
        "documents",
        "recordings",
        "users",
        "practices",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in ENUMS:
        ENUM(name=name).drop(bind, checkfirst=True)
