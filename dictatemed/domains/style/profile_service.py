"""
Subspecialty style profile service.

CRUD for per-clinician, per-subspecialty style profiles and their seed
letters, plus the fallback chain that decides which profile letter
generation uses: subspecialty profile, then the user's global profile, then
none.

Profiles are cached in process for ``settings.style_profile_cache_ttl_seconds``.
Every mutation refreshes or drops the cache entry for its (user, subspecialty)
pair.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.base import utc_now
from dictatemed.core.database.entities.style_profiles import StyleSeedLetter, SubspecialtyStyleProfile
from dictatemed.core.database.repositories import (
    AuditLogRepository,
    StyleEditRepository,
    StyleProfileRepository,
    StyleSeedLetterRepository,
    UserRepository,
)
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import StyleSource, Subspecialty
from dictatemed.core.models.domain.style import (
    CONFIDENCE_FIELDS,
    EditStatistics,
    GlobalStyleProfile,
    SubspecialtyStyleProfileData,
)
from dictatemed.core.models.io.style import ProfileOperationResponse, StyleProfileList
from dictatemed.server.core.config import settings

logger = get_logger(__name__)

RESOURCE_STYLE_PROFILE = "style_profile"
RESOURCE_SEED_LETTER = "style_seed_letter"
MIN_EDITS_FOR_ANALYSIS = 5


class ProfileCache:
    """TTL cache of profiles keyed by ``user_id:subspecialty``."""

    def __init__(self, ttl_seconds: Optional[int] = None) -> None:
        self._ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[SubspecialtyStyleProfileData, float]] = {}

    @property
    def ttl_seconds(self) -> int:
        if self._ttl_seconds is not None:
            return self._ttl_seconds
        return settings.style_profile_cache_ttl_seconds

    @staticmethod
    def key(user_id: str, subspecialty: Subspecialty) -> str:
        return f"{user_id}:{Subspecialty(subspecialty).value}"

    def get(self, user_id: str, subspecialty: Subspecialty) -> Optional[SubspecialtyStyleProfileData]:
        key = self.key(user_id, subspecialty)
        entry = self._entries.get(key)
        if entry is None:
            return None
        profile, cached_at = entry
        if time.monotonic() - cached_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return profile

    def set(self, user_id: str, subspecialty: Subspecialty, profile: SubspecialtyStyleProfileData) -> None:
        self._entries[self.key(user_id, subspecialty)] = (profile, time.monotonic())

    def invalidate(self, user_id: str, subspecialty: Subspecialty) -> None:
        self._entries.pop(self.key(user_id, subspecialty), None)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {"size": len(self._entries), "keys": list(self._entries)}


_profile_cache = ProfileCache()


def clear_profile_cache() -> None:
    _profile_cache.clear()


def get_cache_stats() -> Dict[str, Any]:
    return _profile_cache.stats()


def to_profile_data(profile: SubspecialtyStyleProfile) -> SubspecialtyStyleProfileData:
    return SubspecialtyStyleProfileData.model_validate(profile.to_data())


def _new_profile(user_id: str, subspecialty: Subspecialty, fields: Dict[str, Any]) -> SubspecialtyStyleProfile:
    profile = SubspecialtyStyleProfile(user_id=user_id, subspecialty=subspecialty)
    profile.apply_data({k: v for k, v in fields.items() if v is not None})
    return profile


async def create_style_profile(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty, fields: Dict[str, Any]
) -> SubspecialtyStyleProfileData:
    """
    Create a subspecialty profile, or update it when one already exists.

    Args:
        session: Database session
        user_id: Owning clinician
        subspecialty: Profile subspecialty
        fields: Initial preference values (snake_case profile fields)

    Returns:
        The stored profile
    """
    repo = StyleProfileRepository(session)
    if await repo.get_for_user(user_id, subspecialty) is not None:
        logger.info(f"Style profile exists for {user_id}/{subspecialty}, updating instead")
        return await update_style_profile(session, user_id, subspecialty, fields)

    # Analysis bookkeeping is owned by the learning pipeline.
    fields = {k: v for k, v in fields.items() if k not in ("confidence", "total_edits_analyzed", "last_analyzed_at")}
    profile = repo.stage(_new_profile(user_id, subspecialty, fields))
    AuditLogRepository(session).record(
        user_id,
        "style.subspecialty_profile_created",
        RESOURCE_STYLE_PROFILE,
        profile.id,
        {"subspecialty": Subspecialty(subspecialty).value},
    )
    await session.commit()
    await session.refresh(profile)

    data = to_profile_data(profile)
    _profile_cache.set(user_id, subspecialty, data)
    logger.info(f"Style profile created: {profile.id}", extra={"user_id": user_id, "subspecialty": subspecialty})
    return data


async def get_style_profile(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty
) -> Optional[SubspecialtyStyleProfileData]:
    cached = _profile_cache.get(user_id, subspecialty)
    if cached is not None:
        return cached

    profile = await StyleProfileRepository(session).get_for_user(user_id, subspecialty)
    if profile is None:
        return None

    data = to_profile_data(profile)
    _profile_cache.set(user_id, subspecialty, data)
    return data


async def list_style_profiles(session: AsyncSession, user_id: str) -> StyleProfileList:
    profiles = await StyleProfileRepository(session).list(filters={"user_id": user_id})
    data = [to_profile_data(p) for p in profiles]
    for item in data:
        _profile_cache.set(user_id, item.subspecialty, item)
    return StyleProfileList(profiles=data, total_count=len(data))


async def update_style_profile(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty, updates: Dict[str, Any]
) -> SubspecialtyStyleProfileData:
    """
    Update a subspecialty profile, creating it when missing.

    Only keys present in ``updates`` are written.
    """
    updates = {k: v for k, v in updates.items() if not (k == "learning_strength" and v is None)}
    repo = StyleProfileRepository(session)
    profile = await repo.get_for_user(user_id, subspecialty)
    if profile is None:
        profile = repo.stage(_new_profile(user_id, subspecialty, updates))
    else:
        profile.apply_data(updates)
        profile.updated_at = utc_now()
        repo.stage(profile)

    AuditLogRepository(session).record(
        user_id,
        "style.subspecialty_profile_updated",
        RESOURCE_STYLE_PROFILE,
        profile.id,
        {"subspecialty": Subspecialty(subspecialty).value, "updated_fields": sorted(updates)},
    )
    await session.commit()
    await session.refresh(profile)

    data = to_profile_data(profile)
    _profile_cache.set(user_id, subspecialty, data)
    logger.info(f"Style profile updated: {profile.id}", extra={"updated_fields": sorted(updates)})
    return data


async def delete_style_profile(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty
) -> ProfileOperationResponse:
    """Remove a profile so generation falls back to the global profile or defaults."""
    subspecialty = Subspecialty(subspecialty)
    repo = StyleProfileRepository(session)
    profile = await repo.get_for_user(user_id, subspecialty)
    if profile is None:
        return ProfileOperationResponse(
            success=False, message=f"No style profile found for subspecialty {subspecialty.value}"
        )

    await session.delete(profile)
    AuditLogRepository(session).record(
        user_id,
        "style.subspecialty_profile_deleted",
        RESOURCE_STYLE_PROFILE,
        profile.id,
        {"subspecialty": subspecialty.value, "total_edits_analyzed": profile.total_edits_analyzed},
    )
    await session.commit()

    _profile_cache.invalidate(user_id, subspecialty)
    logger.info(f"Style profile deleted (reset to defaults): {profile.id}")
    return ProfileOperationResponse(
        success=True, message=f"Style profile for {subspecialty.value} has been reset to defaults"
    )


async def adjust_learning_strength(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty, learning_strength: float
) -> ProfileOperationResponse:
    subspecialty = Subspecialty(subspecialty)
    if learning_strength < 0 or learning_strength > 1:
        return ProfileOperationResponse(success=False, message="Learning strength must be between 0.0 and 1.0")

    repo = StyleProfileRepository(session)
    profile = await repo.get_for_user(user_id, subspecialty)
    if profile is None:
        return ProfileOperationResponse(
            success=False, message=f"No style profile found for subspecialty {subspecialty.value}"
        )

    previous = profile.learning_strength
    profile.learning_strength = learning_strength
    profile.updated_at = utc_now()
    repo.stage(profile)
    AuditLogRepository(session).record(
        user_id,
        "style.learning_strength_adjusted",
        RESOURCE_STYLE_PROFILE,
        profile.id,
        {"subspecialty": subspecialty.value, "previous_strength": previous, "new_strength": learning_strength},
    )
    await session.commit()
    await session.refresh(profile)

    data = to_profile_data(profile)
    _profile_cache.set(user_id, subspecialty, data)
    logger.info(f"Learning strength adjusted {previous} -> {learning_strength}", extra={"profile_id": profile.id})
    return ProfileOperationResponse(
        success=True, profile=data, message=f"Learning strength updated to {learning_strength}"
    )


async def create_seed_letter(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty, letter_text: str
) -> StyleSeedLetter:
    seed = StyleSeedLetterRepository(session).stage(
        StyleSeedLetter(user_id=user_id, subspecialty=subspecialty, letter_text=letter_text)
    )
    AuditLogRepository(session).record(
        user_id,
        "style.seed_letter_created",
        RESOURCE_SEED_LETTER,
        seed.id,
        {"subspecialty": Subspecialty(subspecialty).value, "letter_length": len(letter_text)},
    )
    await session.commit()
    await session.refresh(seed)
    logger.info(f"Seed letter created: {seed.id}")
    return seed


async def list_seed_letters(
    session: AsyncSession, user_id: str, subspecialty: Optional[Subspecialty] = None
) -> List[StyleSeedLetter]:
    return await StyleSeedLetterRepository(session).list(filters={"user_id": user_id, "subspecialty": subspecialty})


async def delete_seed_letter(session: AsyncSession, user_id: str, seed_letter_id: str) -> ProfileOperationResponse:
    seed = await StyleSeedLetterRepository(session).get_by_id(seed_letter_id)
    if seed is None or seed.user_id != user_id:
        return ProfileOperationResponse(success=False, message="Seed letter not found")

    await session.delete(seed)
    AuditLogRepository(session).record(
        user_id,
        "style.seed_letter_deleted",
        RESOURCE_SEED_LETTER,
        seed_letter_id,
        {"subspecialty": Subspecialty(seed.subspecialty).value},
    )
    await session.commit()
    logger.info(f"Seed letter deleted: {seed_letter_id}")
    return ProfileOperationResponse(success=True, message="Seed letter deleted")


async def mark_seed_letter_analyzed(session: AsyncSession, seed_letter_id: str) -> None:
    repo = StyleSeedLetterRepository(session)
    seed = await repo.get_by_id(seed_letter_id)
    if seed is not None:
        seed.analyzed_at = utc_now()
        await repo.update(seed)


async def get_subspecialty_edit_statistics(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty
) -> EditStatistics:
    repo = StyleEditRepository(session)
    now = utc_now()
    return EditStatistics(
        total_edits=await repo.count(user_id, subspecialty),
        edits_last_7_days=await repo.count(user_id, subspecialty, since=now - timedelta(days=7)),
        edits_last_30_days=await repo.count(user_id, subspecialty, since=now - timedelta(days=30)),
        last_edit_date=await repo.last_edit_at(user_id, subspecialty),
    )


async def has_enough_edits_for_analysis(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty, min_edits: int = MIN_EDITS_FOR_ANALYSIS
) -> bool:
    return await StyleEditRepository(session).count(user_id, subspecialty) >= min_edits


def convert_global_profile(
    user_id: str, raw: Dict[str, Any], subspecialty: Optional[Subspecialty] = None
) -> Optional[SubspecialtyStyleProfileData]:
    """
    Express a global profile in the subspecialty profile shape.

    Returns None when the global profile lacks confidence data or a numeric
    edit count.
    """
    if not raw.get("confidence") or not isinstance(raw.get("total_edits_analyzed"), int):
        return None

    profile = GlobalStyleProfile.model_validate(raw)
    source_confidence = profile.confidence or {}
    confidence = {field: 0.0 for field in CONFIDENCE_FIELDS}
    confidence.update(
        {
            "section_order": source_confidence.get("paragraph_structure", 0.0),
            "vocabulary_map": 0.5,
            "greeting_style": source_confidence.get("greeting_style", 0.0),
            "closing_style": source_confidence.get("closing_style", 0.0),
            "signoff_template": source_confidence.get("closing_style", 0.0),
            "formality_level": source_confidence.get("formality_level", 0.0),
            "paragraph_structure": source_confidence.get("paragraph_structure", 0.0),
        }
    )

    now = utc_now()
    return SubspecialtyStyleProfileData(
        id="global",
        user_id=user_id,
        subspecialty=subspecialty or Subspecialty.GENERAL_CARDIOLOGY,
        section_order=profile.section_order,
        vocabulary_map=profile.vocabulary_preferences,
        greeting_style=profile.greeting_style,
        closing_style=profile.closing_style,
        signoff_template=profile.closing_examples[0] if profile.closing_examples else None,
        formality_level=profile.formality_level,
        paragraph_structure=profile.paragraph_structure,
        confidence=confidence,
        learning_strength=1.0,
        total_edits_analyzed=profile.total_edits_analyzed or 0,
        last_analyzed_at=profile.last_analyzed_at,
        created_at=now,
        updated_at=now,
    )


async def get_effective_profile(
    session: AsyncSession, user_id: str, subspecialty: Optional[Subspecialty] = None
) -> Tuple[Optional[SubspecialtyStyleProfileData], StyleSource]:
    """
    Resolve the profile letter generation should use.

    Order: the subspecialty profile once it has analysed edits, then the
    user's analysed global profile, then ``(None, default)``.
    """
    if subspecialty:
        profile = await get_style_profile(session, user_id, subspecialty)
        if profile is not None and profile.total_edits_analyzed > 0:
            return profile, StyleSource.SUBSPECIALTY

    user = await UserRepository(session).get_by_id(user_id)
    raw = user.get_style_profile() if user else None
    if raw and raw.get("last_analyzed_at") and raw.get("total_edits_analyzed"):
        converted = convert_global_profile(user_id, raw, subspecialty)
        if converted is not None:
            return converted, StyleSource.GLOBAL

    return None, StyleSource.DEFAULT
