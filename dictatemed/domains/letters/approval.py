"""
Letter approval workflow.

A letter can be approved once every measurement and diagnosis is verified
and every critical hallucination flag is dismissed. Approval stores the final
text, the line diff against the draft and an audit entry in one transaction.
Afterwards the edits are fed to the subspecialty style learning pipeline;
that step never fails the approval.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.base import utc_now
from dictatemed.core.database.entities.letters import Letter
from dictatemed.core.database.entities.practices import User
from dictatemed.core.database.repositories import AuditLogRepository, LetterRepository
from dictatemed.core.errors import AppError, ExternalServiceError, ForbiddenError, NotFoundError, ValidationError
from dictatemed.core.llm import TextGenerationClient
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import (
    ClinicalValueType,
    FlagSeverity,
    LetterStatus,
    Subspecialty,
)
from dictatemed.core.models.domain.letters import (
    ApprovalValidation,
    ClinicalValue,
    ContentDiff,
    HallucinationFlag,
    TextChange,
)
from dictatemed.core.models.io.letters import (
    ApprovalRequirements,
    ApprovalResult,
    ApprovalStatus,
    LetterApproveRequest,
)
from dictatemed.domains.style.learning_pipeline import (
    queue_style_analysis,
    record_subspecialty_edits,
    should_trigger_analysis,
)

logger = get_logger(__name__)

CRITICAL_VALUE_TYPES = (ClinicalValueType.MEASUREMENT, ClinicalValueType.DIAGNOSIS)
MIN_VERIFICATION_RATE = 80.0
MAX_RISK_SCORE = 70
DISMISS_REASON = "Reviewed and dismissed by physician"


def _critical_values(values: Sequence[ClinicalValue]) -> List[ClinicalValue]:
    return [v for v in values if v.type in CRITICAL_VALUE_TYPES]


def validate_approval_requirements(letter: Letter) -> ApprovalValidation:
    """
    Check whether a letter can be approved.

    Errors block approval; warnings are reported but do not.

    Args:
        letter: Letter row with its verification state

    Returns:
        ApprovalValidation with errors and warnings
    """
    errors: List[str] = []
    warnings: List[str] = []

    if letter.status == LetterStatus.APPROVED:
        errors.append("Letter is already approved")
    if letter.status in (LetterStatus.GENERATING, LetterStatus.FAILED):
        errors.append(f"Letter cannot be approved in {LetterStatus(letter.status).value} status")

    values = [ClinicalValue.model_validate(v) for v in letter.get_clinical_values()]
    unverified = [v for v in _critical_values(values) if not v.verified]
    if unverified:
        errors.append(
            f"{len(unverified)} critical clinical values not verified: {', '.join(v.name for v in unverified)}"
        )

    flags = [HallucinationFlag.model_validate(f) for f in letter.get_hallucination_flags()]
    open_critical = [f for f in flags if f.severity == FlagSeverity.CRITICAL and not f.dismissed]
    if open_critical:
        errors.append(f"{len(open_critical)} critical hallucination flags not addressed")

    open_warnings = [f for f in flags if f.severity == FlagSeverity.WARNING and not f.dismissed]
    if open_warnings:
        warnings.append(f"{len(open_warnings)} warning-level hallucination flags remain")

    rate = letter.verification_rate or 0.0
    if rate < MIN_VERIFICATION_RATE:
        warnings.append(f"Low verification rate: {rate:.1f}% (recommended: >80%)")

    risk = letter.hallucination_risk_score or 0
    if risk > MAX_RISK_SCORE:
        warnings.append(f"High hallucination risk score: {risk}/100 (recommended: <70)")

    logger.info(
        f"Approval requirements validated for letter {letter.id}",
        extra={"is_valid": not errors, "error_count": len(errors), "warning_count": len(warnings)},
    )
    return ApprovalValidation(is_valid=not errors, errors=errors, warnings=warnings)


def calculate_content_diff(draft: str, final: str, user_id: str = "") -> ContentDiff:
    """
    Line diff between draft and final text.

    Lines are compared position by position: a differing pair is a
    modification and surplus lines at the end are additions or deletions.
    ``index`` is the character offset where the line starts.
    """
    diff = ContentDiff()
    draft_lines = draft.split("\n")
    final_lines = final.split("\n")
    now = utc_now()
    char_index = 0

    for i in range(max(len(draft_lines), len(final_lines))):
        if i >= len(draft_lines):
            line = final_lines[i]
            diff.additions.append(
                TextChange(type="addition", new_text=line, index=char_index, timestamp=now, user_id=user_id)
            )
            char_index += len(line) + 1
        elif i >= len(final_lines):
            line = draft_lines[i]
            diff.deletions.append(
                TextChange(type="deletion", original_text=line, index=char_index, timestamp=now, user_id=user_id)
            )
            char_index += len(line) + 1
        elif draft_lines[i] == final_lines[i]:
            char_index += len(draft_lines[i]) + 1
        else:
            diff.modifications.append(
                TextChange(
                    type="modification",
                    original_text=draft_lines[i],
                    new_text=final_lines[i],
                    index=char_index,
                    timestamp=now,
                    user_id=user_id,
                )
            )
            char_index += max(len(draft_lines[i]), len(final_lines[i])) + 1
    return diff


def infer_subspecialty(letter: Letter, user: Optional[User]) -> Optional[Subspecialty]:
    """The letter's subspecialty, else the author's first one."""
    if letter.subspecialty:
        return Subspecialty(letter.subspecialty)
    if user is not None:
        for value in user.get_subspecialties():
            try:
                return Subspecialty(value)
            except ValueError:
                logger.warning(f"Ignoring unknown subspecialty on user {user.id}: {value}")
    return None


async def _get_owned_letter(session: AsyncSession, letter_id: str, user_id: str) -> Letter:
    letter = await LetterRepository(session).get_by_id(letter_id)
    if letter is None or letter.deleted_at is not None:
        raise NotFoundError("Letter not found")
    if letter.user_id != user_id:
        raise ForbiddenError("Cannot approve another user's letter")
    return letter


async def approve_letter(
    session: AsyncSession,
    client: TextGenerationClient,
    user: User,
    letter_id: str,
    request: LetterApproveRequest,
) -> ApprovalResult:
    """
    Approve a letter.

    Values in ``verified_value_ids`` and flags in ``dismissed_flag_ids`` are
    marked before the requirements are checked.

    Args:
        session: Database session
        client: Text generation backend used if style analysis becomes due
        user: Approving clinician, who must own the letter
        letter_id: Letter to approve
        request: Final text and review decisions

    Returns:
        ApprovalResult including any non-blocking warnings

    Raises:
        NotFoundError: Unknown or deleted letter
        ForbiddenError: The letter belongs to someone else
        ValidationError: Requirements are not met; details carry the errors
    """
    letter = await _get_owned_letter(session, letter_id, user.id)
    logger.info(f"Starting approval of letter {letter_id}", extra={"user_id": user.id})

    now = utc_now()
    values = []
    for raw in letter.get_clinical_values():
        value = ClinicalValue.model_validate(raw)
        if value.id in request.verified_value_ids and not value.verified:
            value = value.model_copy(update={"verified": True, "verified_at": now, "verified_by": user.id})
        values.append(value)
    flags = []
    for raw in letter.get_hallucination_flags():
        flag = HallucinationFlag.model_validate(raw)
        if flag.id in request.dismissed_flag_ids and not flag.dismissed:
            flag = flag.model_copy(
                update={"dismissed": True, "dismissed_at": now, "dismissed_by": user.id, "dismiss_reason": DISMISS_REASON}
            )
        flags.append(flag)
    letter.set_clinical_values([v.model_dump(mode="json") for v in values])
    letter.set_hallucination_flags([f.model_dump(mode="json") for f in flags])

    validation = validate_approval_requirements(letter)
    if not validation.is_valid:
        # Leave the row untouched
        await session.rollback()
        logger.warning(f"Approval validation failed for letter {letter_id}", extra={"errors": validation.errors})
        raise ValidationError(
            "Letter does not meet approval requirements",
            details={"errors": validation.errors, "warnings": validation.warnings},
        )
    if validation.warnings:
        logger.warning(f"Approving letter {letter_id} with warnings", extra={"warnings": validation.warnings})

    draft = letter.content_draft or ""
    diff = calculate_content_diff(draft, request.final_content, user.id)
    review_started_at = letter.review_started_at or letter.created_at
    review_duration_ms = request.review_duration_ms
    if review_duration_ms is None:
        review_duration_ms = int((now - review_started_at).total_seconds() * 1000)
    subspecialty = infer_subspecialty(letter, user)

    letter.status = LetterStatus.APPROVED
    letter.content_final = request.final_content
    letter.set_content_diff(diff.model_dump(mode="json"))
    letter.approved_at = now
    letter.approved_by = user.id
    letter.review_duration_ms = review_duration_ms
    letter.updated_at = now
    LetterRepository(session).stage(letter)

    AuditLogRepository(session).record(
        user.id,
        "letter.approve",
        "letter",
        letter.id,
        {
            "letter_type": letter.letter_type,
            "subspecialty": subspecialty.value if subspecialty else None,
            "review_duration_ms": review_duration_ms,
            "verified_values_count": sum(1 for v in values if v.verified),
            "dismissed_flags_count": sum(1 for f in flags if f.dismissed),
            "content_changes": {
                "additions": len(diff.additions),
                "deletions": len(diff.deletions),
                "modifications": len(diff.modifications),
            },
        },
    )
    await session.commit()
    await session.refresh(letter)
    logger.info(f"Letter {letter_id} approved", extra={"review_duration_ms": review_duration_ms})

    if subspecialty and draft and request.final_content:
        await learn_from_approval(session, client, user.id, letter.id, draft, request.final_content, subspecialty)

    return ApprovalResult(
        letter_id=letter_id,
        status=LetterStatus.APPROVED,
        approved_at=now,
        warnings=validation.warnings,
    )


async def learn_from_approval(
    session: AsyncSession,
    client: TextGenerationClient,
    user_id: str,
    letter_id: str,
    draft: str,
    final: str,
    subspecialty: Subspecialty,
) -> None:
    """Record style edits for an approved letter and analyse them when due.

    Failures are logged; the approval has already been committed.
    """
    try:
        edit_count, analysis = await record_subspecialty_edits(
            session, user_id, letter_id, draft, final, subspecialty
        )
        logger.info(
            f"Recorded {edit_count} subspecialty edit(s) for style learning",
            extra={"subspecialty": subspecialty.value, "sections_modified": analysis.overall_stats.sections_modified},
        )
        should_analyze, _, reason = await should_trigger_analysis(session, user_id, subspecialty)
        if should_analyze:
            logger.info(f"Triggering style analysis: {reason}", extra={"subspecialty": subspecialty.value})
            await queue_style_analysis(session, client, user_id, subspecialty)
        else:
            logger.debug(f"Style analysis not triggered: {reason}")
    except (AppError, ExternalServiceError, ValueError) as e:
        logger.warning(f"Subspecialty style learning failed: {e}", extra={"letter_id": letter_id})
        await session.rollback()


async def get_approval_status(session: AsyncSession, letter_id: str, user_id: str) -> ApprovalStatus:
    """Approval readiness of a letter owned by ``user_id``."""
    letter = await LetterRepository(session).get_for_user(letter_id, user_id)
    if letter is None:
        raise NotFoundError("Letter not found")

    validation = validate_approval_requirements(letter)
    values = [ClinicalValue.model_validate(v) for v in letter.get_clinical_values()]
    flags = [HallucinationFlag.model_validate(f) for f in letter.get_hallucination_flags()]

    return ApprovalStatus(
        can_approve=validation.is_valid,
        requirements=ApprovalRequirements(
            critical_values_verified=all(v.verified for v in _critical_values(values)),
            critical_flags_addressed=all(f.dismissed for f in flags if f.severity == FlagSeverity.CRITICAL),
            verification_rate_sufficient=(letter.verification_rate or 0.0) >= MIN_VERIFICATION_RATE,
        ),
        errors=validation.errors,
        warnings=validation.warnings,
    )
