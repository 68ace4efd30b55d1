"""
Recording Endpoints.

Upload consultation audio, submit it for transcription and receive the
transcript back from the provider.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.models.domain.enums import RecordingStatus
from dictatemed.core.models.io.recordings import (
    RecordingConfirm,
    RecordingCreate,
    RecordingCreateResult,
    RecordingList,
    RecordingRead,
    TranscriptPayload,
)
from dictatemed.domains.recordings import service
from dictatemed.server.services.deps import CurrentUserDep, StorageDep

router = APIRouter(tags=["recordings"])


@router.post(
    "",
    response_model=RecordingCreateResult,
    status_code=status.HTTP_201_CREATED,
    summary="Create Recording",
    description="Start a recording upload and receive a pre-signed URL for the audio.",
    responses={400: {"description": "Unsupported audio type"}},
)
async def create_recording(
    body: RecordingCreate, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> RecordingCreateResult:
    return await service.create_recording(session, storage, user, body)


@router.get("", response_model=RecordingList, summary="List Recordings")
async def list_recordings(
    user: CurrentUserDep,
    recording_status: Optional[RecordingStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> RecordingList:
    return await service.list_recordings(session, user, recording_status, page, limit)


@router.get(
    "/{recording_id}",
    response_model=RecordingRead,
    summary="Get Recording",
    responses={404: {"description": "Recording not found"}},
)
async def get_recording(
    recording_id: str, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> RecordingRead:
    return await service.get_recording(session, storage, user, recording_id)


@router.patch(
    "/{recording_id}",
    response_model=RecordingRead,
    summary="Confirm Recording Upload",
    responses={400: {"description": "Upload already confirmed"}, 404: {"description": "Recording not found"}},
)
async def confirm_recording(
    recording_id: str,
    body: RecordingConfirm,
    user: CurrentUserDep,
    session: AsyncSession = Depends(get_session),
) -> RecordingRead:
    return await service.confirm_recording_upload(session, user, recording_id, body)


@router.delete(
    "/{recording_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Recording",
    responses={404: {"description": "Recording not found"}},
)
async def delete_recording(
    recording_id: str, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> Response:
    await service.delete_recording(session, user, recording_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{recording_id}/transcribe",
    response_model=RecordingRead,
    summary="Submit for Transcription",
    responses={400: {"description": "Recording not uploaded"}, 404: {"description": "Recording not found"}},
)
async def transcribe_recording(
    recording_id: str, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> RecordingRead:
    return await service.submit_transcription(session, user, recording_id)


@router.post(
    "/{recording_id}/transcript",
    response_model=RecordingRead,
    summary="Store Transcript",
    description="Callback used by the transcription provider to deliver the transcript.",
    responses={400: {"description": "Recording is not being transcribed"}, 404: {"description": "Recording not found"}},
)
async def store_transcript(
    recording_id: str,
    body: TranscriptPayload,
    user: CurrentUserDep,
    session: AsyncSession = Depends(get_session),
) -> RecordingRead:
    return await service.store_transcript(session, user, recording_id, body)
