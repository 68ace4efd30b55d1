"""
Unit tests for practice administration and user settings.
"""

import pytest

from dictatemed.core.database.repositories import AuditLogRepository
from dictatemed.core.errors import ForbiddenError
from dictatemed.core.models.domain.enums import ModelPreference
from dictatemed.core.models.io.practice import LetterDefaults, PracticeUpdate, UserSettings
from dictatemed.domains.practice.service import (
    deep_merge,
    get_practice,
    get_user_settings,
    list_practice_users,
    update_practice,
    update_user_settings,
)


class TestDeepMerge:
    def test_nested_dicts_merge(self):
        base = {"a": 1, "nested": {"x": 1, "y": 2}}

        merged = deep_merge(base, {"nested": {"y": 3, "z": 4}, "b": 2})

        assert merged == {"a": 1, "b": 2, "nested": {"x": 1, "y": 3, "z": 4}}
        assert base == {"a": 1, "nested": {"x": 1, "y": 2}}

    def test_none_removes_key(self):
        assert deep_merge({"a": 1, "b": 2}, {"a": None, "missing": None}) == {"b": 2}

    def test_non_dict_replaces(self):
        assert deep_merge({"a": {"x": 1}}, {"a": [1, 2]}) == {"a": [1, 2]}


class TestPractice:
    @pytest.mark.asyncio
    async def test_members_can_read(self, session, user, practice):
        read = await get_practice(session, user)

        assert read.id == practice.id
        assert read.name == "Harbour Heart Clinic"
        assert read.settings == {}

    @pytest.mark.asyncio
    async def test_only_admins_update(self, session, user):
        with pytest.raises(ForbiddenError, match="Admin access required"):
            await update_practice(session, user, PracticeUpdate(name="Renamed"))

    @pytest.mark.asyncio
    async def test_admin_update_merges_settings(self, session, admin_user):
        await update_practice(
            session, admin_user, PracticeUpdate(name="Harbour Heart", settings={"letters": {"cc_gp": True}})
        )

        read = await update_practice(
            session, admin_user, PracticeUpdate(letterhead="HH letterhead", settings={"letters": {"font": "serif"}})
        )

        assert read.name == "Harbour Heart"
        assert read.letterhead == "HH letterhead"
        assert read.settings == {"letters": {"cc_gp": True, "font": "serif"}}

        entries = await AuditLogRepository(session).list(filters={"action": "practice.update"})
        assert sorted(e.get_details()["fields"] for e in entries) == [
            ["letterhead", "settings"],
            ["name", "settings"],
        ]

    @pytest.mark.asyncio
    async def test_list_members(self, session, admin_user, user, colleague, outsider):
        members = await list_practice_users(session, admin_user)

        assert [m.name for m in members] == ["Dr James Patel", "Dr Sarah Chen", "Practice Admin"]
        assert members[1].subspecialties == ["INTERVENTIONAL"]

    @pytest.mark.asyncio
    async def test_members_list_needs_admin(self, session, user):
        with pytest.raises(ForbiddenError):
            await list_practice_users(session, user)


class TestUserSettings:
    @pytest.mark.asyncio
    async def test_updates_merge_key_by_key(self, session, user):
        await update_user_settings(session, user, UserSettings(style_mode="off"))

        result = await update_user_settings(session, user, UserSettings(theme="dark"))

        assert result.style_mode == "off"
        assert result.theme == "dark"
        assert user.get_settings() == {"style_mode": "off", "theme": "dark"}

    @pytest.mark.asyncio
    async def test_none_removes_setting(self, session, user):
        await update_user_settings(
            session, user, UserSettings(style_mode="global", model_preference=ModelPreference.QUALITY)
        )

        await update_user_settings(session, user, UserSettings(style_mode=None))

        assert user.get_settings() == {"model_preference": "quality"}

    @pytest.mark.asyncio
    async def test_nested_defaults_merge(self, session, user):
        await update_user_settings(session, user, UserSettings(letter_defaults=LetterDefaults(sign_off="Kind regards")))
        await update_user_settings(session, user, UserSettings(letter_defaults=LetterDefaults(cc_gp=True)))

        settings = get_user_settings(user)

        assert settings.letter_defaults.sign_off == "Kind regards"
        assert settings.letter_defaults.cc_gp is True

    @pytest.mark.asyncio
    async def test_unknown_keys_are_kept(self, session, user):
        await update_user_settings(session, user, UserSettings.model_validate({"dictation_hotkey": "F9"}))

        assert user.get_settings() == {"dictation_hotkey": "F9"}
        entries = await AuditLogRepository(session).list(filters={"action": "user.settings_update"})
        assert len(entries) == 1
