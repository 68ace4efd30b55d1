"""
Unit tests for the subspecialty style profile service.
"""

from types import SimpleNamespace

import pytest

from dictatemed.core.database.base import utc_now
from dictatemed.core.database.entities.style_profiles import StyleEdit
from dictatemed.core.database.repositories import AuditLogRepository
from dictatemed.core.models.domain.enums import StyleSource, Subspecialty
from dictatemed.domains.style import profile_service
from dictatemed.domains.style.profile_service import (
    ProfileCache,
    adjust_learning_strength,
    convert_global_profile,
    create_seed_letter,
    create_style_profile,
    delete_seed_letter,
    delete_style_profile,
    get_cache_stats,
    get_effective_profile,
    get_style_profile,
    get_subspecialty_edit_statistics,
    has_enough_edits_for_analysis,
    list_seed_letters,
    list_style_profiles,
    update_style_profile,
)

GLOBAL_PROFILE = {
    "greeting_style": "formal",
    "closing_style": "formal",
    "formality_level": "formal",
    "paragraph_structure": "short",
    "vocabulary_preferences": {"utilize": "use"},
    "section_order": ["history", "plan"],
    "closing_examples": ["Yours sincerely,"],
    "confidence": {"greeting_style": 0.8, "closing_style": 0.7, "formality_level": 0.6, "paragraph_structure": 0.9},
    "total_edits_analyzed": 12,
    "last_analyzed_at": "2026-01-10T09:00:00",
}


class TestProfileCrud:
    @pytest.mark.asyncio
    async def test_create_profile(self, session, user):
        profile = await create_style_profile(
            session,
            user.id,
            Subspecialty.INTERVENTIONAL,
            {"greeting_style": "formal", "section_order": ["history", "plan"], "total_edits_analyzed": 40},
        )

        assert profile.subspecialty == Subspecialty.INTERVENTIONAL
        assert profile.greeting_style == "formal"
        assert profile.section_order == ["history", "plan"]
        # analysis bookkeeping cannot be set by callers
        assert profile.total_edits_analyzed == 0
        assert profile.learning_strength == 1.0

        entries = await AuditLogRepository(session).list(filters={"action": "style.subspecialty_profile_created"})
        assert [e.resource_id for e in entries] == [profile.id]

    @pytest.mark.asyncio
    async def test_create_existing_profile_updates_it(self, session, user):
        first = await create_style_profile(session, user.id, Subspecialty.IMAGING, {"greeting_style": "formal"})

        second = await create_style_profile(session, user.id, Subspecialty.IMAGING, {"greeting_style": "casual"})

        assert second.id == first.id
        assert second.greeting_style == "casual"
        assert (await list_style_profiles(session, user.id)).total_count == 1

    @pytest.mark.asyncio
    async def test_update_creates_missing_profile(self, session, user):
        profile = await update_style_profile(
            session, user.id, Subspecialty.HEART_FAILURE, {"formality_level": "neutral", "learning_strength": None}
        )

        assert profile.formality_level == "neutral"
        assert profile.learning_strength == 1.0

    @pytest.mark.asyncio
    async def test_update_only_touches_given_fields(self, session, user):
        await create_style_profile(
            session, user.id, Subspecialty.IMAGING, {"greeting_style": "formal", "vocabulary_map": {"a": "b"}}
        )

        profile = await update_style_profile(session, user.id, Subspecialty.IMAGING, {"vocabulary_map": {"c": "d"}})

        assert profile.greeting_style == "formal"
        assert profile.vocabulary_map == {"c": "d"}

    @pytest.mark.asyncio
    async def test_profiles_are_per_user(self, session, user, colleague):
        await create_style_profile(session, user.id, Subspecialty.IMAGING, {})

        assert await get_style_profile(session, colleague.id, Subspecialty.IMAGING) is None
        assert (await list_style_profiles(session, colleague.id)).total_count == 0

    @pytest.mark.asyncio
    async def test_delete_profile(self, session, user):
        await create_style_profile(session, user.id, Subspecialty.IMAGING, {"greeting_style": "formal"})

        result = await delete_style_profile(session, user.id, Subspecialty.IMAGING)

        assert result.success
        assert result.message == "Style profile for IMAGING has been reset to defaults"
        assert await get_style_profile(session, user.id, Subspecialty.IMAGING) is None

    @pytest.mark.asyncio
    async def test_delete_missing_profile(self, session, user):
        result = await delete_style_profile(session, user.id, Subspecialty.IMAGING)

        assert not result.success
        assert result.message == "No style profile found for subspecialty IMAGING"


class TestLearningStrength:
    @pytest.mark.asyncio
    async def test_adjust(self, session, user):
        await create_style_profile(session, user.id, Subspecialty.IMAGING, {})

        result = await adjust_learning_strength(session, user.id, Subspecialty.IMAGING, 0.4)

        assert result.success
        assert result.profile.learning_strength == 0.4
        entries = await AuditLogRepository(session).list(filters={"action": "style.learning_strength_adjusted"})
        assert entries[0].get_details()["previous_strength"] == 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strength", [-0.1, 1.5])
    async def test_out_of_range_is_refused(self, session, user, strength):
        await create_style_profile(session, user.id, Subspecialty.IMAGING, {})

        result = await adjust_learning_strength(session, user.id, Subspecialty.IMAGING, strength)

        assert not result.success
        assert result.message == "Learning strength must be between 0.0 and 1.0"

    @pytest.mark.asyncio
    async def test_missing_profile(self, session, user):
        result = await adjust_learning_strength(session, user.id, Subspecialty.IMAGING, 0.5)

        assert not result.success
        assert result.profile is None


class TestProfileCache:
    def test_expired_entries_are_dropped(self, monkeypatch):
        cache = ProfileCache(ttl_seconds=10)
        clock = iter([100.0, 105.0, 120.0])
        monkeypatch.setattr(profile_service, "time", SimpleNamespace(monotonic=lambda: next(clock)))
        profile = object()

        cache.set("u1", Subspecialty.IMAGING, profile)  # type: ignore[arg-type]

        assert cache.get("u1", Subspecialty.IMAGING) is profile
        assert cache.get("u1", Subspecialty.IMAGING) is None
        assert cache.stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_mutations_refresh_cache(self, session, user):
        await create_style_profile(session, user.id, Subspecialty.IMAGING, {"greeting_style": "formal"})
        assert get_cache_stats()["keys"] == [f"{user.id}:IMAGING"]

        await update_style_profile(session, user.id, Subspecialty.IMAGING, {"greeting_style": "casual"})
        assert (await get_style_profile(session, user.id, Subspecialty.IMAGING)).greeting_style == "casual"

        await delete_style_profile(session, user.id, Subspecialty.IMAGING)
        assert get_cache_stats()["size"] == 0


class TestSeedLetters:
    @pytest.mark.asyncio
    async def test_create_list_delete(self, session, user):
        seed = await create_seed_letter(session, user.id, Subspecialty.IMAGING, "Dear Dr Smith, ...")
        await create_seed_letter(session, user.id, Subspecialty.HEART_FAILURE, "Dear Colleague, ...")

        imaging = await list_seed_letters(session, user.id, Subspecialty.IMAGING)
        assert [s.id for s in imaging] == [seed.id]
        assert len(await list_seed_letters(session, user.id)) == 2

        result = await delete_seed_letter(session, user.id, seed.id)
        assert result.success
        assert len(await list_seed_letters(session, user.id)) == 1

    @pytest.mark.asyncio
    async def test_cannot_delete_someone_elses_seed_letter(self, session, user, colleague):
        seed = await create_seed_letter(session, user.id, Subspecialty.IMAGING, "Dear Dr Smith, ...")

        result = await delete_seed_letter(session, colleague.id, seed.id)

        assert not result.success
        assert result.message == "Seed letter not found"


class TestEditStatistics:
    @pytest.mark.asyncio
    async def test_counts(self, session, user):
        for _ in range(3):
            session.add(
                StyleEdit(
                    user_id=user.id,
                    subspecialty=Subspecialty.IMAGING,
                    section_type="plan",
                    edit_type="modified",
                    created_at=utc_now(),
                )
            )
        await session.commit()

        stats = await get_subspecialty_edit_statistics(session, user.id, Subspecialty.IMAGING)

        assert stats.total_edits == 3
        assert stats.edits_last_7_days == 3
        assert stats.last_edit_date is not None
        assert not await has_enough_edits_for_analysis(session, user.id, Subspecialty.IMAGING)
        assert await has_enough_edits_for_analysis(session, user.id, Subspecialty.IMAGING, min_edits=3)


class TestEffectiveProfile:
    @pytest.mark.asyncio
    async def test_analysed_subspecialty_profile_wins(self, session, user):
        user.set_style_profile(GLOBAL_PROFILE)
        session.add(user)
        await session.commit()
        await update_style_profile(session, user.id, Subspecialty.INTERVENTIONAL, {"total_edits_analyzed": 8})

        profile, source = await get_effective_profile(session, user.id, Subspecialty.INTERVENTIONAL)

        assert source == StyleSource.SUBSPECIALTY
        assert profile.total_edits_analyzed == 8

    @pytest.mark.asyncio
    async def test_unanalysed_profile_falls_back_to_global(self, session, user):
        user.set_style_profile(GLOBAL_PROFILE)
        session.add(user)
        await session.commit()
        await create_style_profile(session, user.id, Subspecialty.INTERVENTIONAL, {"greeting_style": "casual"})

        profile, source = await get_effective_profile(session, user.id, Subspecialty.INTERVENTIONAL)

        assert source == StyleSource.GLOBAL
        assert profile.id == "global"
        assert profile.subspecialty == Subspecialty.INTERVENTIONAL
        assert profile.greeting_style == "formal"

    @pytest.mark.asyncio
    async def test_no_profiles_means_default(self, session, user):
        assert await get_effective_profile(session, user.id, Subspecialty.INTERVENTIONAL) == (None, StyleSource.DEFAULT)

    @pytest.mark.asyncio
    async def test_unanalysed_global_profile_is_ignored(self, session, user):
        user.set_style_profile({**GLOBAL_PROFILE, "last_analyzed_at": None})
        session.add(user)
        await session.commit()

        assert await get_effective_profile(session, user.id) == (None, StyleSource.DEFAULT)


class TestConvertGlobalProfile:
    def test_maps_fields_and_confidence(self):
        profile = convert_global_profile("user-1", GLOBAL_PROFILE, Subspecialty.IMAGING)

        assert profile.subspecialty == Subspecialty.IMAGING
        assert profile.signoff_template == "Yours sincerely,"
        assert profile.vocabulary_map == {"utilize": "use"}
        assert profile.confidence["section_order"] == 0.9
        assert profile.confidence["signoff_template"] == 0.7
        assert profile.confidence["vocabulary_map"] == 0.5
        assert profile.confidence["phrasing_preferences"] == 0.0
        assert profile.learning_strength == 1.0

    def test_defaults_to_general_cardiology(self):
        assert convert_global_profile("user-1", GLOBAL_PROFILE).subspecialty == Subspecialty.GENERAL_CARDIOLOGY

    @pytest.mark.parametrize(
        "raw",
        [
            {**GLOBAL_PROFILE, "confidence": None},
            {**GLOBAL_PROFILE, "total_edits_analyzed": "12"},
        ],
    )
    def test_incomplete_profile_is_not_converted(self, raw):
        assert convert_global_profile("user-1", raw) is None
