"""
Style Profile Endpoints.

Manage per-subspecialty style profiles, trigger analysis of recorded edits
and manage the seed letters used to bootstrap a profile.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.errors import NotFoundError, ValidationError
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import Subspecialty
from dictatemed.core.models.domain.style import StyleAnalysisResult, SubspecialtyStyleProfileData
from dictatemed.core.models.io.style import (
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
from dictatemed.domains.style import learning_pipeline, profile_service
from dictatemed.server.services.deps import CurrentUserDep, TextClientDep

logger = get_logger(__name__)

router = APIRouter(tags=["style"])


@router.get(
    "/profiles",
    response_model=StyleProfileList,
    summary="List Style Profiles",
    description="List the clinician's subspecialty style profiles.",
)
async def list_profiles(user: CurrentUserDep, session: AsyncSession = Depends(get_session)) -> StyleProfileList:
    return await profile_service.list_style_profiles(session, user.id)


@router.post(
    "/profiles",
    response_model=SubspecialtyStyleProfileData,
    status_code=status.HTTP_201_CREATED,
    summary="Create Style Profile",
    description="Create a subspecialty profile. An existing profile for the subspecialty is updated instead.",
    response_description="The stored profile.",
)
async def create_profile(
    body: StyleProfileCreate, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> SubspecialtyStyleProfileData:
    fields = body.model_dump(exclude={"subspecialty"}, exclude_unset=True)
    return await profile_service.create_style_profile(session, user.id, body.subspecialty, fields)


@router.get(
    "/profiles/{subspecialty}",
    response_model=SubspecialtyStyleProfileData,
    summary="Get Style Profile",
    responses={404: {"description": "No profile for the subspecialty"}},
)
async def get_profile(
    subspecialty: Subspecialty, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> SubspecialtyStyleProfileData:
    profile = await profile_service.get_style_profile(session, user.id, subspecialty)
    if profile is None:
        raise NotFoundError(f"No style profile found for subspecialty {subspecialty.value}")
    return profile


@router.put(
    "/profiles/{subspecialty}",
    response_model=SubspecialtyStyleProfileData,
    summary="Update Style Profile",
    description="Update the listed preferences; the profile is created when missing.",
)
async def update_profile(
    subspecialty: Subspecialty,
    body: StyleProfileUpdate,
    user: CurrentUserDep,
    session: AsyncSession = Depends(get_session),
) -> SubspecialtyStyleProfileData:
    return await profile_service.update_style_profile(
        session, user.id, subspecialty, body.model_dump(exclude_unset=True)
    )


@router.delete(
    "/profiles/{subspecialty}",
    response_model=ProfileOperationResponse,
    summary="Reset Style Profile",
    description="Delete the profile so generation falls back to the global profile or defaults.",
    responses={404: {"description": "No profile for the subspecialty"}},
)
async def delete_profile(
    subspecialty: Subspecialty, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> ProfileOperationResponse:
    result = await profile_service.delete_style_profile(session, user.id, subspecialty)
    if not result.success:
        raise NotFoundError(result.message)
    return result


@router.post(
    "/profiles/{subspecialty}/analyze",
    response_model=StyleAnalysisResponse,
    summary="Analyze Edits",
    description=(
        "Analyse recent edits for the subspecialty and merge the learned preferences into the profile. "
        "Refused with INSUFFICIENT_EDITS when fewer than five edits exist, unless forced."
    ),
    responses={
        400: {"description": "Not enough edits to analyse"},
        502: {"description": "The language model is unavailable"},
    },
)
async def analyze_profile(
    subspecialty: Subspecialty,
    user: CurrentUserDep,
    client: TextClientDep,
    body: Optional[StyleAnalysisRequest] = None,
    session: AsyncSession = Depends(get_session),
) -> StyleAnalysisResponse:
    force = body.force if body else False
    analysis = await learning_pipeline.run_style_analysis(session, client, user.id, subspecialty, force=force)
    profile = await profile_service.get_style_profile(session, user.id, subspecialty)
    if profile is None:
        raise NotFoundError(f"No style profile found for subspecialty {subspecialty.value}")
    statistics = await profile_service.get_subspecialty_edit_statistics(session, user.id, subspecialty)
    return StyleAnalysisResponse(profile=profile, analysis=analysis, statistics=statistics)


@router.patch(
    "/profiles/{subspecialty}/strength",
    response_model=ProfileOperationResponse,
    summary="Adjust Learning Strength",
    description="Set how strongly learned preferences apply, from 0.0 (off) to 1.0 (full).",
    responses={400: {"description": "Strength out of range"}, 404: {"description": "No profile"}},
)
async def adjust_strength(
    subspecialty: Subspecialty,
    body: LearningStrengthUpdate,
    user: CurrentUserDep,
    session: AsyncSession = Depends(get_session),
) -> ProfileOperationResponse:
    if not 0.0 <= body.learning_strength <= 1.0:
        raise ValidationError("Learning strength must be between 0.0 and 1.0")
    result = await profile_service.adjust_learning_strength(session, user.id, subspecialty, body.learning_strength)
    if not result.success:
        raise NotFoundError(result.message)
    return result


@router.get(
    "/profiles/{subspecialty}/effective",
    response_model=EffectiveProfileRead,
    summary="Get Effective Profile",
    description="The profile letter generation would use for the subspecialty and where it came from.",
)
async def get_effective(
    subspecialty: Subspecialty, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> EffectiveProfileRead:
    profile, source = await profile_service.get_effective_profile(session, user.id, subspecialty)
    return EffectiveProfileRead(profile=profile, source=source)


@router.get(
    "/seed",
    response_model=List[SeedLetterRead],
    summary="List Seed Letters",
)
async def list_seed_letters(
    user: CurrentUserDep,
    subspecialty: Optional[Subspecialty] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> List[SeedLetterRead]:
    seeds = await profile_service.list_seed_letters(session, user.id, subspecialty)
    return [SeedLetterRead.model_validate(s) for s in seeds]


@router.post(
    "/seed",
    response_model=SeedLetterRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add Seed Letter",
    description=(
        "Store an example letter for a subspecialty. With analyze=true the pending seed letters are "
        "analysed straight away to bootstrap the profile."
    ),
)
async def create_seed_letter(
    body: SeedLetterCreate,
    user: CurrentUserDep,
    client: TextClientDep,
    analyze: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
) -> SeedLetterRead:
    seed = await profile_service.create_seed_letter(session, user.id, body.subspecialty, body.letter_text)
    result = SeedLetterRead.model_validate(seed)
    if analyze:
        analysis: Optional[StyleAnalysisResult] = await learning_pipeline.analyze_seed_letters(
            session, client, user.id, body.subspecialty
        )
        if analysis is not None:
            await session.refresh(seed)
            result = SeedLetterRead.model_validate(seed)
    return result


@router.delete(
    "/seed/{seed_letter_id}",
    response_model=ProfileOperationResponse,
    summary="Delete Seed Letter",
    responses={404: {"description": "Seed letter not found"}},
)
async def delete_seed_letter(
    seed_letter_id: str, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> ProfileOperationResponse:
    result = await profile_service.delete_seed_letter(session, user.id, seed_letter_id)
    if not result.success:
        raise NotFoundError(result.message)
    return result
