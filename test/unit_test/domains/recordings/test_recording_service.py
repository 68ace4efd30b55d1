"""
Unit tests for the recording lifecycle service.
"""

import pytest

from dictatemed.core.database.repositories import AuditLogRepository, RecordingRepository
from dictatemed.core.errors import NotFoundError, ValidationError
from dictatemed.core.models.domain.enums import RecordingMode, RecordingStatus
from dictatemed.core.models.domain.letters import SpeakerSegment
from dictatemed.core.models.io.recordings import RecordingConfirm, RecordingCreate, TranscriptPayload
from dictatemed.domains.recordings.service import (
    confirm_recording_upload,
    create_recording,
    delete_recording,
    get_recording,
    list_recordings,
    store_transcript,
    submit_transcription,
)


async def uploaded_recording(session, storage, user) -> str:
    created = await create_recording(session, storage, user, RecordingCreate(mode=RecordingMode.AMBIENT))
    await confirm_recording_upload(session, user, created.id, RecordingConfirm(duration_seconds=312))
    return created.id


class TestCreateRecording:
    @pytest.mark.asyncio
    async def test_presigned_upload(self, session, storage, user):
        created = await create_recording(
            session, storage, user, RecordingCreate(mode=RecordingMode.DICTATION, content_type="audio/mp4")
        )

        assert "op=put_object" in created.upload_url
        recording = await RecordingRepository(session).get_by_id(created.id)
        assert recording.status == RecordingStatus.UPLOADING
        assert recording.storage_key.startswith(f"recordings/{user.id}/")
        assert recording.storage_key.endswith(f"{created.id}.m4a")

        entries = await AuditLogRepository(session).list(filters={"action": "recording.create"})
        assert entries[0].get_details() == {"mode": "DICTATION"}

    @pytest.mark.asyncio
    async def test_rejects_non_audio(self, session, storage, user):
        with pytest.raises(ValidationError, match="Invalid audio type"):
            await create_recording(
                session, storage, user, RecordingCreate(mode=RecordingMode.AMBIENT, content_type="video/mp4")
            )


class TestRecordingLifecycle:
    @pytest.mark.asyncio
    async def test_confirm_sets_duration(self, session, storage, user):
        created = await create_recording(session, storage, user, RecordingCreate(mode=RecordingMode.AMBIENT))

        read = await confirm_recording_upload(session, user, created.id, RecordingConfirm(duration_seconds=312))

        assert read.status == RecordingStatus.UPLOADED
        assert read.duration_seconds == 312

        with pytest.raises(ValidationError, match="already been confirmed"):
            await confirm_recording_upload(session, user, created.id, RecordingConfirm())

    @pytest.mark.asyncio
    async def test_download_url_after_upload(self, session, storage, user):
        created = await create_recording(session, storage, user, RecordingCreate(mode=RecordingMode.AMBIENT))

        assert (await get_recording(session, storage, user, created.id)).download_url is None

        await confirm_recording_upload(session, user, created.id, RecordingConfirm())
        assert "op=get_object" in (await get_recording(session, storage, user, created.id)).download_url

    @pytest.mark.asyncio
    async def test_transcription_flow(self, session, storage, user):
        recording_id = await uploaded_recording(session, storage, user)

        submitted = await submit_transcription(session, user, recording_id)

        assert submitted.status == RecordingStatus.TRANSCRIBING
        assert submitted.transcription_job_id == f"job-{recording_id}"

        payload = TranscriptPayload(
            text="Doctor: How is the chest pain? Patient: Better since the stent.",
            speakers=[
                SpeakerSegment(speaker="doctor", text="How is the chest pain?", timestamp=0),
                SpeakerSegment(speaker="patient", text="Better since the stent.", timestamp=4),
            ],
            job_id=f"job-{recording_id}",
        )
        transcribed = await store_transcript(session, user, recording_id, payload)

        assert transcribed.status == RecordingStatus.TRANSCRIBED
        assert transcribed.transcript_text == payload.text
        assert [s.speaker for s in transcribed.speakers] == ["doctor", "patient"]

    @pytest.mark.asyncio
    async def test_transcription_requires_upload(self, session, storage, user):
        created = await create_recording(session, storage, user, RecordingCreate(mode=RecordingMode.AMBIENT))

        with pytest.raises(ValidationError, match="status: UPLOADING"):
            await submit_transcription(session, user, created.id)

    @pytest.mark.asyncio
    async def test_transcript_must_match_job(self, session, storage, user):
        recording_id = await uploaded_recording(session, storage, user)
        await submit_transcription(session, user, recording_id)

        with pytest.raises(ValidationError, match="does not match"):
            await store_transcript(session, user, recording_id, TranscriptPayload(text="Hello", job_id="job-other"))

    @pytest.mark.asyncio
    async def test_transcript_requires_submission(self, session, storage, user):
        recording_id = await uploaded_recording(session, storage, user)

        with pytest.raises(ValidationError, match="status: UPLOADED"):
            await store_transcript(session, user, recording_id, TranscriptPayload(text="Hello"))


class TestListAndDelete:
    @pytest.mark.asyncio
    async def test_list_is_owner_scoped(self, session, storage, user, colleague):
        for _ in range(2):
            await create_recording(session, storage, user, RecordingCreate(mode=RecordingMode.AMBIENT))
        await create_recording(session, storage, colleague, RecordingCreate(mode=RecordingMode.AMBIENT))

        listed = await list_recordings(session, user, limit=1)

        assert listed.total == 2
        assert len(listed.recordings) == 1
        assert listed.has_more
        assert (await list_recordings(session, user, status=RecordingStatus.TRANSCRIBED)).total == 0

    @pytest.mark.asyncio
    async def test_other_users_cannot_read(self, session, storage, user, colleague):
        created = await create_recording(session, storage, user, RecordingCreate(mode=RecordingMode.AMBIENT))

        with pytest.raises(NotFoundError):
            await get_recording(session, storage, colleague, created.id)

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, session, storage, user):
        created = await create_recording(session, storage, user, RecordingCreate(mode=RecordingMode.AMBIENT))

        await delete_recording(session, user, created.id)

        with pytest.raises(NotFoundError):
            await get_recording(session, storage, user, created.id)
        assert (await RecordingRepository(session).get_by_id(created.id)).deleted_at is not None
