"""
Letter Endpoints.

Generation, review, approval and soft deletion of consultation letters.
Every route is scoped to the authenticated clinician.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import LetterStatus, LetterType
from dictatemed.core.models.io.letters import (
    ApprovalResult,
    ApprovalStatus,
    GenerationResult,
    LetterApproveRequest,
    LetterContentUpdate,
    LetterGenerateRequest,
    LetterList,
    LetterRead,
)
from dictatemed.domains.letters import approval, service
from dictatemed.server.services.deps import CurrentUserDep, TextClientDep

logger = get_logger(__name__)

router = APIRouter(tags=["letters"])


@router.get(
    "",
    response_model=LetterList,
    summary="List Letters",
    description="List the clinician's letters, newest first, with optional status and type filters.",
    response_description="A page of letter summaries.",
)
async def list_letters(
    user: CurrentUserDep,
    letter_status: Optional[LetterStatus] = Query(default=None, alias="status"),
    letter_type: Optional[LetterType] = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> LetterList:
    return await service.list_letters(session, user.id, letter_status, letter_type, page, limit)


@router.post(
    "",
    response_model=GenerationResult,
    status_code=status.HTTP_201_CREATED,
    summary="Generate Letter",
    description=(
        "Generate a draft letter from a transcribed recording, processed documents and free-text notes. "
        "Patient identifiers are replaced by tokens before the model sees them and the draft is "
        "conditioned on the clinician's learned style."
    ),
    response_description="The draft letter with its risk assessment.",
    responses={
        201: {"description": "Draft generated"},
        400: {"description": "No usable sources or PHI protection failed"},
        404: {"description": "Recording or document not found"},
        502: {"description": "The language model is unavailable"},
    },
)
async def generate_letter(
    request: LetterGenerateRequest,
    user: CurrentUserDep,
    client: TextClientDep,
    session: AsyncSession = Depends(get_session),
) -> GenerationResult:
    """
    Generate a letter draft.

    - **letter_type**: NEW_PATIENT, FOLLOW_UP, ANGIOGRAM_PROCEDURE or ECHO_REPORT.
    - **recording_id** / **document_ids** / **user_input**: at least one source is required.
    - **patient**: identifiers to protect; placeholders are used when omitted.
    - **style_overrides**: switch individual style preferences off for this letter.
    """
    return await service.generate_letter(session, client, user, request)


@router.get(
    "/{letter_id}",
    response_model=LetterRead,
    summary="Get Letter",
    responses={404: {"description": "Letter not found"}},
)
async def get_letter(letter_id: str, user: CurrentUserDep, session: AsyncSession = Depends(get_session)) -> LetterRead:
    return LetterRead.from_entity(await service.get_letter(session, user.id, letter_id))


@router.patch(
    "/{letter_id}",
    response_model=LetterRead,
    summary="Edit Letter",
    description="Save edits to the draft and move the letter into review.",
    responses={400: {"description": "Letter is already approved"}, 404: {"description": "Letter not found"}},
)
async def update_letter(
    letter_id: str,
    body: LetterContentUpdate,
    user: CurrentUserDep,
    session: AsyncSession = Depends(get_session),
) -> LetterRead:
    letter = await service.update_letter_content(session, user.id, letter_id, body.content)
    return LetterRead.from_entity(letter)


@router.delete(
    "/{letter_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Letter",
    responses={400: {"description": "Approved letters cannot be deleted"}, 404: {"description": "Letter not found"}},
)
async def delete_letter(letter_id: str, user: CurrentUserDep, session: AsyncSession = Depends(get_session)) -> Response:
    await service.delete_letter(session, user.id, letter_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{letter_id}/approve",
    response_model=ApprovalResult,
    summary="Approve Letter",
    description=(
        "Approve the final text. Values and flags listed in the request are marked verified or dismissed "
        "first; approval is refused while critical values are unverified or critical flags are open."
    ),
    response_description="The approval outcome with any non-blocking warnings.",
    responses={
        400: {"description": "Approval requirements not met"},
        403: {"description": "Letter belongs to another clinician"},
        404: {"description": "Letter not found"},
    },
)
async def approve_letter(
    letter_id: str,
    request: LetterApproveRequest,
    user: CurrentUserDep,
    client: TextClientDep,
    session: AsyncSession = Depends(get_session),
) -> ApprovalResult:
    return await approval.approve_letter(session, client, user, letter_id, request)


@router.get(
    "/{letter_id}/approval-status",
    response_model=ApprovalStatus,
    summary="Get Approval Status",
    description="Report what still blocks approval of the letter.",
    responses={404: {"description": "Letter not found"}},
)
async def get_approval_status(
    letter_id: str, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> ApprovalStatus:
    return await approval.get_approval_status(session, letter_id, user.id)
