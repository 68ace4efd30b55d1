"""
Recording lifecycle service.

Audio goes straight to object storage through a pre-signed URL. Once the
client confirms the upload the recording can be submitted for
transcription; the provider later posts the transcript back, which makes
the recording usable as a letter source.

UPLOADING -> UPLOADED -> TRANSCRIBING -> TRANSCRIBED (or FAILED)
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.base import new_id, utc_now
from dictatemed.core.database.entities.practices import User
from dictatemed.core.database.entities.recordings import Recording
from dictatemed.core.database.repositories import AuditLogRepository, RecordingRepository
from dictatemed.core.errors import NotFoundError, ValidationError
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import RecordingStatus
from dictatemed.core.models.io.recordings import (
    ALLOWED_AUDIO_TYPES,
    RecordingConfirm,
    RecordingCreate,
    RecordingCreateResult,
    RecordingList,
    RecordingRead,
    TranscriptPayload,
)
from dictatemed.core.storage import ObjectStorage

logger = get_logger(__name__)

RESOURCE_RECORDING = "recording"
MAX_LIST_LIMIT = 100

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
}


def to_read_model(recording: Recording, download_url: Optional[str] = None) -> RecordingRead:
    data = {name: getattr(recording, name) for name in RecordingRead.model_fields if hasattr(recording, name)}
    data["speakers"] = recording.get_speakers()
    data["download_url"] = download_url
    return RecordingRead.model_validate(data)


async def _get_recording(session: AsyncSession, user: User, recording_id: str) -> Recording:
    recording = await RecordingRepository(session).get_for_user(recording_id, user.id)
    if recording is None:
        raise NotFoundError("Recording not found")
    return recording


async def create_recording(
    session: AsyncSession, storage: ObjectStorage, user: User, data: RecordingCreate
) -> RecordingCreateResult:
    if data.content_type not in ALLOWED_AUDIO_TYPES:
        raise ValidationError(f"Invalid audio type. Allowed types: {', '.join(ALLOWED_AUDIO_TYPES)}")

    now = utc_now()
    recording_id = new_id()
    key = f"recordings/{user.id}/{now.year}/{now.month:02d}/{recording_id}.{_EXTENSIONS[data.content_type]}"
    recording = Recording(
        id=recording_id,
        user_id=user.id,
        mode=data.mode,
        content_type=data.content_type,
        storage_key=key,
        status=RecordingStatus.UPLOADING,
    )
    upload_url, expires_at = storage.get_upload_url(key, data.content_type)

    RecordingRepository(session).stage(recording)
    AuditLogRepository(session).record(
        user.id, "recording.create", RESOURCE_RECORDING, recording.id, {"mode": data.mode.value}
    )
    await session.commit()

    logger.info(f"Recording created: {recording.id}", extra={"mode": data.mode.value})
    return RecordingCreateResult(id=recording.id, upload_url=upload_url, expires_at=expires_at)


async def get_recording(session: AsyncSession, storage: ObjectStorage, user: User, recording_id: str) -> RecordingRead:
    recording = await _get_recording(session, user, recording_id)
    download_url = None
    if recording.storage_key and recording.status != RecordingStatus.UPLOADING:
        download_url, _ = storage.get_download_url(recording.storage_key)
    return to_read_model(recording, download_url)


async def list_recordings(
    session: AsyncSession, user: User, status: Optional[RecordingStatus] = None, page: int = 1, limit: int = 20
) -> RecordingList:
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    page = max(1, page)
    offset = (page - 1) * limit
    recordings, total = await RecordingRepository(session).list_for_user(user.id, limit, offset, {"status": status})
    return RecordingList(
        recordings=[to_read_model(r) for r in recordings],
        total=total,
        page=page,
        limit=limit,
        has_more=offset + len(recordings) < total,
    )


async def confirm_recording_upload(
    session: AsyncSession, user: User, recording_id: str, data: RecordingConfirm
) -> RecordingRead:
    recording = await _get_recording(session, user, recording_id)
    if recording.status != RecordingStatus.UPLOADING:
        raise ValidationError("Recording upload has already been confirmed")

    recording.status = RecordingStatus.UPLOADED
    recording.duration_seconds = data.duration_seconds
    recording.updated_at = utc_now()
    RecordingRepository(session).stage(recording)
    AuditLogRepository(session).record(
        user.id,
        "recording.upload_confirm",
        RESOURCE_RECORDING,
        recording.id,
        {"duration_seconds": data.duration_seconds},
    )
    await session.commit()
    await session.refresh(recording)
    return to_read_model(recording)


async def submit_transcription(session: AsyncSession, user: User, recording_id: str) -> RecordingRead:
    """
    Hand an uploaded recording to the transcription provider.

    The provider reference is stored as ``transcription_job_id`` and the
    transcript arrives later through ``store_transcript``.
    """
    recording = await _get_recording(session, user, recording_id)
    if recording.status != RecordingStatus.UPLOADED:
        raise ValidationError(
            f"Cannot transcribe recording with status: {RecordingStatus(recording.status).value}"
        )

    recording.status = RecordingStatus.TRANSCRIBING
    recording.transcription_job_id = f"job-{recording.id}"
    recording.processing_error = None
    recording.updated_at = utc_now()
    RecordingRepository(session).stage(recording)
    AuditLogRepository(session).record(user.id, "recording.transcribe", RESOURCE_RECORDING, recording.id)
    await session.commit()
    await session.refresh(recording)

    logger.info(f"Recording submitted for transcription: {recording.id}")
    return to_read_model(recording)


async def store_transcript(
    session: AsyncSession, user: User, recording_id: str, payload: TranscriptPayload
) -> RecordingRead:
    recording = await _get_recording(session, user, recording_id)
    if recording.status != RecordingStatus.TRANSCRIBING:
        raise ValidationError(
            f"Cannot store transcript for recording with status: {RecordingStatus(recording.status).value}"
        )
    if payload.job_id and recording.transcription_job_id and payload.job_id != recording.transcription_job_id:
        raise ValidationError("Transcript does not match the submitted transcription job")

    recording.transcript_text = payload.text
    recording.set_speakers([s.model_dump() for s in payload.speakers])
    recording.status = RecordingStatus.TRANSCRIBED
    recording.updated_at = utc_now()
    RecordingRepository(session).stage(recording)
    AuditLogRepository(session).record(
        user.id,
        "recording.transcribed",
        RESOURCE_RECORDING,
        recording.id,
        {"text_length": len(payload.text), "speaker_segments": len(payload.speakers)},
    )
    await session.commit()
    await session.refresh(recording)

    logger.info(f"Transcript stored for recording {recording.id}", extra={"text_length": len(payload.text)})
    return to_read_model(recording)


async def delete_recording(session: AsyncSession, user: User, recording_id: str) -> None:
    """Soft-delete; the audio stays in storage until lifecycle rules remove it."""
    recording = await _get_recording(session, user, recording_id)
    now = utc_now()
    recording.deleted_at = now
    recording.updated_at = now
    RecordingRepository(session).stage(recording)
    AuditLogRepository(session).record(user.id, "recording.delete", RESOURCE_RECORDING, recording.id)
    await session.commit()
    logger.info(f"Recording deleted: {recording.id}")
