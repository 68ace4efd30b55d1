"""
Unit tests for the letter approval workflow.
"""

from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from dictatemed.core.database.entities.letters import Letter
from dictatemed.core.database.repositories import AuditLogRepository, StyleEditRepository
from dictatemed.core.errors import ForbiddenError, NotFoundError, ValidationError
from dictatemed.core.models.domain.enums import ClinicalValueType, FlagSeverity, LetterStatus, LetterType, Subspecialty
from dictatemed.core.models.domain.letters import ClinicalValue, HallucinationFlag
from dictatemed.core.models.io.letters import LetterApproveRequest
from dictatemed.domains.letters.approval import (
    approve_letter,
    calculate_content_diff,
    get_approval_status,
    infer_subspecialty,
    validate_approval_requirements,
)

DRAFT = "History:\nChest pain on exertion.\n\nPlan:\nAngiogram next week."
FINAL = "History:\nChest pain on exertion.\n\nPlan:\nCoronary angiogram next week via the radial approach."


def build_letter(user_id: str, **overrides) -> Letter:
    values = [
        ClinicalValue(id="v0", type=ClinicalValueType.MEASUREMENT, name="LVEF", value="45", unit="%", source_anchor_id="a0"),
        ClinicalValue(id="v1", type=ClinicalValueType.DIAGNOSIS, name="Diagnosis", value="AF"),
        ClinicalValue(id="v2", type=ClinicalValueType.MEDICATION, name="aspirin", value="100", unit="mg"),
    ]
    flags = [
        HallucinationFlag(
            id="f0",
            segment_text="LAD 70%",
            start_index=0,
            end_index=7,
            reason="Vessel finding for LAD lacks source citation",
            severity=FlagSeverity.CRITICAL,
        ),
        HallucinationFlag(
            id="f1",
            segment_text="15/04/2024",
            start_index=10,
            end_index=20,
            reason='Specific date "15/04/2024" not found in sources',
            severity=FlagSeverity.WARNING,
        ),
    ]
    fields = dict(
        user_id=user_id,
        letter_type=LetterType.FOLLOW_UP,
        status=LetterStatus.DRAFT,
        subspecialty=Subspecialty.INTERVENTIONAL,
        content_draft=DRAFT,
        verification_rate=50.0,
        hallucination_risk_score=40,
    )
    fields.update(overrides)
    letter = Letter(**fields)
    letter.set_clinical_values([v.model_dump(mode="json") for v in values])
    letter.set_hallucination_flags([f.model_dump(mode="json") for f in flags])
    return letter


@pytest_asyncio.fixture
async def letter(session, user) -> Letter:
    letter = build_letter(user.id)
    session.add(letter)
    await session.commit()
    await session.refresh(letter)
    return letter


class TestValidateApprovalRequirements:
    def test_unreviewed_letter_is_blocked(self):
        validation = validate_approval_requirements(build_letter("u1"))

        assert not validation.is_valid
        assert validation.errors == [
            "2 critical clinical values not verified: LVEF, Diagnosis",
            "1 critical hallucination flags not addressed",
        ]
        assert validation.warnings == [
            "1 warning-level hallucination flags remain",
            "Low verification rate: 50.0% (recommended: >80%)",
        ]

    @pytest.mark.parametrize(
        "status, error",
        [
            (LetterStatus.APPROVED, "Letter is already approved"),
            (LetterStatus.GENERATING, "Letter cannot be approved in GENERATING status"),
            (LetterStatus.FAILED, "Letter cannot be approved in FAILED status"),
        ],
    )
    def test_status_errors(self, status, error):
        validation = validate_approval_requirements(build_letter("u1", status=status))

        assert validation.errors[0] == error

    def test_high_risk_is_only_a_warning(self):
        letter = build_letter("u1", hallucination_risk_score=85, verification_rate=90.0)
        letter.set_clinical_values([])
        letter.set_hallucination_flags([])

        validation = validate_approval_requirements(letter)

        assert validation.is_valid
        assert validation.warnings == ["High hallucination risk score: 85/100 (recommended: <70)"]


class TestContentDiff:
    def test_modification_and_addition(self):
        diff = calculate_content_diff("a\nb\nc", "a\nB\nc\nd", "u1")

        assert [(c.original_text, c.new_text, c.index) for c in diff.modifications] == [("b", "B", 2)]
        assert [(c.new_text, c.index) for c in diff.additions] == [("d", 6)]
        assert diff.deletions == []
        assert diff.modifications[0].user_id == "u1"

    def test_deletion(self):
        diff = calculate_content_diff("a\nb", "a")

        assert [(c.original_text, c.index) for c in diff.deletions] == [("b", 2)]

    def test_identical_text(self):
        diff = calculate_content_diff(DRAFT, DRAFT)

        assert (diff.additions, diff.deletions, diff.modifications) == ([], [], [])


class TestInferSubspecialty:
    @pytest.mark.asyncio
    async def test_letter_subspecialty_wins(self, user):
        letter = build_letter(user.id, subspecialty=Subspecialty.IMAGING)

        assert infer_subspecialty(letter, user) == Subspecialty.IMAGING

    @pytest.mark.asyncio
    async def test_falls_back_to_user(self, user):
        letter = build_letter(user.id, subspecialty=None)

        assert infer_subspecialty(letter, user) == Subspecialty.INTERVENTIONAL
        assert infer_subspecialty(letter, None) is None


class TestApproveLetter:
    @pytest.mark.asyncio
    async def test_blocked_approval_leaves_letter_untouched(self, session, llm_client, user, letter):
        with pytest.raises(ValidationError) as exc_info:
            await approve_letter(session, llm_client, user, letter.id, LetterApproveRequest(final_content=FINAL))

        assert exc_info.value.message == "Letter does not meet approval requirements"
        assert "1 critical hallucination flags not addressed" in exc_info.value.details["errors"]

        await session.refresh(letter)
        assert letter.status == LetterStatus.DRAFT
        assert letter.content_final is None

    @pytest.mark.asyncio
    async def test_approves_after_review(self, session, llm_client, user, letter):
        user_id, letter_id = user.id, letter.id
        request = LetterApproveRequest(
            final_content=FINAL, verified_value_ids=["v0", "v1"], dismissed_flag_ids=["f0"], review_duration_ms=1234
        )

        result = await approve_letter(session, llm_client, user, letter_id, request)

        assert result.letter_id == letter_id
        assert result.status == LetterStatus.APPROVED
        assert "1 warning-level hallucination flags remain" in result.warnings

        await session.refresh(letter)
        assert letter.status == LetterStatus.APPROVED
        assert letter.content_final == FINAL
        assert letter.approved_by == user_id
        assert letter.review_duration_ms == 1234
        assert len(letter.get_content_diff()["modifications"]) == 1

        values = {v["id"]: v for v in letter.get_clinical_values()}
        assert values["v0"]["verified"] and values["v0"]["verified_by"] == user_id
        assert not values["v2"]["verified"]
        flags = {f["id"]: f for f in letter.get_hallucination_flags()}
        assert flags["f0"]["dismissed"]
        assert flags["f0"]["dismiss_reason"] == "Reviewed and dismissed by physician"
        assert not flags["f1"]["dismissed"]

        entries = await AuditLogRepository(session).list(filters={"action": "letter.approve"})
        details = entries[0].get_details()
        assert details["verified_values_count"] == 2
        assert details["dismissed_flags_count"] == 1
        assert details["subspecialty"] == "INTERVENTIONAL"
        assert details["content_changes"] == {"additions": 0, "deletions": 0, "modifications": 1}

    @pytest.mark.asyncio
    async def test_approval_records_style_edits(self, session, llm_client, user, letter):
        user_id = user.id
        request = LetterApproveRequest(final_content=FINAL, verified_value_ids=["v0", "v1"], dismissed_flag_ids=["f0"])

        await approve_letter(session, llm_client, user, letter.id, request)

        assert await StyleEditRepository(session).count(user_id, Subspecialty.INTERVENTIONAL) >= 1
        # Too few edits for an analysis run
        assert llm_client.requests == []

    @pytest.mark.asyncio
    async def test_learning_failure_does_not_fail_approval(self, session, llm_client, user, letter):
        letter_id = letter.id
        request = LetterApproveRequest(final_content=FINAL, verified_value_ids=["v0", "v1"], dismissed_flag_ids=["f0"])

        with patch(
            "dictatemed.domains.letters.approval.record_subspecialty_edits",
            AsyncMock(side_effect=ValueError("boom")),
        ):
            result = await approve_letter(session, llm_client, user, letter_id, request)

        assert result.status == LetterStatus.APPROVED
        await session.refresh(letter)
        assert letter.status == LetterStatus.APPROVED

    @pytest.mark.asyncio
    async def test_other_users_cannot_approve(self, session, llm_client, colleague, letter):
        with pytest.raises(ForbiddenError):
            await approve_letter(session, llm_client, colleague, letter.id, LetterApproveRequest(final_content=FINAL))

    @pytest.mark.asyncio
    async def test_unknown_letter(self, session, llm_client, user):
        with pytest.raises(NotFoundError):
            await approve_letter(session, llm_client, user, "missing", LetterApproveRequest(final_content=FINAL))


class TestApprovalStatus:
    @pytest.mark.asyncio
    async def test_pending_review(self, session, user, letter):
        status = await get_approval_status(session, letter.id, user.id)

        assert not status.can_approve
        assert not status.requirements.critical_values_verified
        assert not status.requirements.critical_flags_addressed
        assert not status.requirements.verification_rate_sufficient
        assert len(status.errors) == 2

    @pytest.mark.asyncio
    async def test_only_owner_sees_status(self, session, colleague, letter):
        with pytest.raises(NotFoundError):
            await get_approval_status(session, letter.id, colleague.id)
