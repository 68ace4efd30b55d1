"""Unit tests for the repository layer.

Tests run against the in-memory SQLite session and cover owner scoping,
soft deletion, pagination counts, the audit trail and the fast extraction
lock.
"""

import pytest

from dictatemed.core.database.entities.letters import Letter
from dictatemed.core.database.entities.referrals import ReferralDocument
from dictatemed.core.database.entities.style_profiles import StyleAnalyticsAggregate
from dictatemed.core.database.repositories import (
    AuditLogRepository,
    LetterRepository,
    QueryBuilder,
    ReferralDocumentRepository,
    StyleAnalyticsRepository,
)
from dictatemed.core.models.domain.enums import FastExtractionStatus, LetterStatus, LetterType, Subspecialty

pytestmark = pytest.mark.asyncio


def make_letter(user_id: str, letter_type: LetterType = LetterType.FOLLOW_UP) -> Letter:
    return Letter(user_id=user_id, letter_type=letter_type, status=LetterStatus.DRAFT, content_draft="Dear Dr Brown")


def make_referral(user, name: str = "referral.pdf") -> ReferralDocument:
    return ReferralDocument(
        user_id=user.id,
        practice_id=user.practice_id,
        filename=name,
        mime_type="application/pdf",
        storage_key=f"referrals/{user.practice_id}/{name}",
    )


class TestLetterRepository:
    async def test_create_and_get(self, session, user):
        repo = LetterRepository(session)

        letter = await repo.create(make_letter(user.id))

        assert letter.id
        assert (await repo.get_by_id(letter.id)).content_draft == "Dear Dr Brown"

    async def test_get_for_user_is_owner_scoped(self, session, user, colleague):
        repo = LetterRepository(session)
        letter = await repo.create(make_letter(user.id))

        assert await repo.get_for_user(letter.id, user.id) is not None
        assert await repo.get_for_user(letter.id, colleague.id) is None

    async def test_soft_delete_hides_letter(self, session, user):
        repo = LetterRepository(session)
        letter = await repo.create(make_letter(user.id))

        assert await repo.delete(letter.id) is True
        assert await repo.delete(letter.id) is False

        assert await repo.get_for_user(letter.id, user.id) is None
        assert (await repo.get_by_id(letter.id)).deleted_at is not None
        assert await repo.list() == []

    async def test_list_for_user_counts_and_filters(self, session, user, colleague):
        repo = LetterRepository(session)
        for _ in range(3):
            await repo.create(make_letter(user.id))
        await repo.create(make_letter(user.id, LetterType.ECHO_REPORT))
        await repo.create(make_letter(colleague.id))

        page, total = await repo.list_for_user(user.id, limit=2, offset=0)
        echo, echo_total = await repo.list_for_user(
            user.id, limit=10, offset=0, filters={"letter_type": LetterType.ECHO_REPORT}
        )

        assert total == 4
        assert len(page) == 2
        assert echo_total == 1
        assert echo[0].letter_type == LetterType.ECHO_REPORT

    async def test_json_columns(self, session, user):
        repo = LetterRepository(session)
        letter = make_letter(user.id)
        letter.set_document_ids(["doc-1", "doc-2"])
        letter.set_content_diff({"added": ["line"]})

        saved = await repo.create(letter)

        assert saved.get_document_ids() == ["doc-1", "doc-2"]
        assert saved.get_content_diff() == {"added": ["line"]}
        assert saved.get_hallucination_flags() == []


class TestAuditLogRepository:
    async def test_record_is_staged_until_commit(self, session, user):
        repo = AuditLogRepository(session)

        entry = repo.record(user.id, "letter.approve", "letter", "letter-1", {"verified": 3})

        assert entry in session.new
        await session.commit()

        stored = await repo.list(filters={"action": "letter.approve"})
        assert [e.resource_id for e in stored] == ["letter-1"]
        assert stored[0].get_details() == {"verified": 3}

    async def test_entries_are_append_only(self, session, user):
        repo = AuditLogRepository(session)
        entry = await repo.create(repo.record(user.id, "letter.create", "letter"))

        with pytest.raises(NotImplementedError):
            await repo.update(entry)
        with pytest.raises(NotImplementedError):
            await repo.delete(entry.id)


class TestReferralDocumentRepository:
    async def test_practice_scoping(self, session, user, colleague, outsider):
        repo = ReferralDocumentRepository(session)
        referral = await repo.create(make_referral(user))

        assert await repo.get_for_practice(referral.id, colleague.practice_id) is not None
        assert await repo.get_for_practice(referral.id, outsider.practice_id) is None

        _, total = await repo.list_for_practice(outsider.practice_id, limit=10, offset=0)
        assert total == 0

    async def test_fast_extraction_lock(self, session, user):
        repo = ReferralDocumentRepository(session)
        referral = await repo.create(make_referral(user))

        assert await repo.claim_fast_extraction(referral.id) is True
        assert await repo.claim_fast_extraction(referral.id) is False

        await session.refresh(referral)
        assert referral.fast_extraction_status == FastExtractionStatus.PROCESSING
        assert referral.fast_extraction_started_at is not None

    async def test_lock_can_be_reclaimed_after_failure(self, session, user):
        repo = ReferralDocumentRepository(session)
        referral = make_referral(user)
        referral.fast_extraction_status = FastExtractionStatus.FAILED
        referral.fast_extraction_error = "timeout"
        referral = await repo.create(referral)

        assert await repo.claim_fast_extraction(referral.id) is True

        await session.refresh(referral)
        assert referral.fast_extraction_error is None

    async def test_hard_delete(self, session, user):
        repo = ReferralDocumentRepository(session)
        referral = await repo.create(make_referral(user))

        assert await repo.delete(referral.id) is True
        assert await repo.get_by_id(referral.id) is None
        assert await repo.delete(referral.id) is False


class TestStyleAnalyticsRepository:
    async def test_latest_per_subspecialty(self, session):
        repo = StyleAnalyticsRepository(session)
        for subspecialty, period in [
            (Subspecialty.IMAGING, "2026-W09"),
            (Subspecialty.IMAGING, "2026-W10"),
            (Subspecialty.STRUCTURAL, "2026-W09"),
        ]:
            await repo.create(StyleAnalyticsAggregate(subspecialty=subspecialty, period=period))

        latest = {a.subspecialty: a.period for a in await repo.latest_per_subspecialty()}

        assert latest == {Subspecialty.IMAGING: "2026-W10", Subspecialty.STRUCTURAL: "2026-W09"}
        assert await repo.get_for_period(Subspecialty.IMAGING, "2026-W11") is None


class TestQueryBuilder:
    async def test_filters_skip_none_and_unknown_fields(self, session, user):
        repo = LetterRepository(session)
        await repo.create(make_letter(user.id))

        letters = await repo.list(filters={"status": None, "not_a_column": "x", "user_id": user.id})

        assert len(letters) == 1

    async def test_pagination(self, session, user):
        repo = LetterRepository(session)
        for _ in range(3):
            await repo.create(make_letter(user.id))

        assert len(await repo.list(limit=2)) == 2
        assert len(await repo.list(limit=2, offset=2)) == 1
        assert QueryBuilder.apply_pagination("stmt", None, None) == "stmt"
