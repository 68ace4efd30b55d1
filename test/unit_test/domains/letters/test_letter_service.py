"""
Unit tests for letter generation and the letter lifecycle.
"""

import re

import pytest
import pytest_asyncio

from dictatemed.core.database.entities.documents import Document
from dictatemed.core.database.entities.letters import Letter
from dictatemed.core.database.entities.recordings import Recording
from dictatemed.core.database.repositories import AuditLogRepository, LetterRepository
from dictatemed.core.errors import ExternalServiceError, NotFoundError, ValidationError
from dictatemed.core.llm import TextGenerationClient, TextGenerationRequest, TextGenerationResponse
from dictatemed.core.models.domain.enums import (
    DocumentStatus,
    DocumentType,
    LetterStatus,
    LetterType,
    RecordingMode,
    RecordingStatus,
    StyleSource,
    Subspecialty,
)
from dictatemed.core.models.domain.letters import PatientPHI
from dictatemed.core.models.io.letters import LetterGenerateRequest
from dictatemed.domains.letters.prompts import SYSTEM_PROMPT
from dictatemed.domains.letters.service import (
    delete_letter,
    generate_letter,
    get_letter,
    list_letters,
    load_letter_sources,
    update_letter_content,
)
from dictatemed.domains.style.profile_service import create_style_profile, update_style_profile

TRANSCRIPT = "Dr Brown referred him for chest pain. LVEF was 45% on the last echo."


class PatientEchoClient(TextGenerationClient):
    """Answers with the patient token it finds in the prompt."""

    def __init__(self) -> None:
        self.prompts = []

    async def generate_text(self, request: TextGenerationRequest) -> TextGenerationResponse:
        self.prompts.append(request.prompt)
        token = re.search(r"PATIENT_[0-9a-f]{8}", request.prompt).group(0)
        return TextGenerationResponse(content=f"{token} is improving.", model_id=request.model_id)


@pytest_asyncio.fixture
async def recording(session, user) -> Recording:
    recording = Recording(
        user_id=user.id, mode=RecordingMode.AMBIENT, status=RecordingStatus.TRANSCRIBED, transcript_text=TRANSCRIPT
    )
    recording.set_speakers([{"speaker": "patient", "text": "The pain comes on with stairs", "timestamp": 12}])
    session.add(recording)
    await session.commit()
    await session.refresh(recording)
    return recording


@pytest_asyncio.fixture
async def document(session, user) -> Document:
    document = Document(
        user_id=user.id,
        filename="echo.pdf",
        mime_type="application/pdf",
        document_type=DocumentType.ECHO_REPORT,
        status=DocumentStatus.PROCESSED,
        extracted_text="LVEF 45%. Mild mitral regurgitation.",
    )
    document.set_extracted_data({"lvef": "45%"})
    session.add(document)
    await session.commit()
    await session.refresh(document)
    return document


async def add_letter(session, user_id: str, status: LetterStatus = LetterStatus.DRAFT) -> Letter:
    letter = Letter(user_id=user_id, letter_type=LetterType.FOLLOW_UP, status=status, content_draft="Draft text")
    session.add(letter)
    await session.commit()
    await session.refresh(letter)
    return letter


def anchored_letter(recording_id: str) -> str:
    return (
        "Dear Dr Brown,\n\n"
        "LVEF was 45% {{SOURCE:" + recording_id + ":LVEF was 45%}}.\n"
        "Review in three months {{SOURCE:user-input:review in three months}}."
    )


class TestLoadLetterSources:
    @pytest.mark.asyncio
    async def test_collects_all_sources(self, session, user, recording, document):
        sources = await load_letter_sources(session, user.id, recording.id, [document.id], "Review in three months")

        assert sources.count == 3
        assert sources.transcript.text == TRANSCRIPT
        assert sources.transcript.speakers[0].timestamp == 12
        assert sources.documents[0].type == "ECHO_REPORT"
        assert sources.documents[0].extracted_data == {"lvef": "45%"}

    @pytest.mark.asyncio
    async def test_blank_user_input_is_ignored(self, session, user, recording):
        sources = await load_letter_sources(session, user.id, recording.id, [], "   ")

        assert sources.user_input is None

    @pytest.mark.asyncio
    async def test_requires_a_source(self, session, user):
        with pytest.raises(ValidationError, match="At least one source"):
            await load_letter_sources(session, user.id, None, [], None)

    @pytest.mark.asyncio
    async def test_recording_must_be_transcribed(self, session, user, recording):
        recording.status = RecordingStatus.TRANSCRIBING
        session.add(recording)
        await session.commit()

        with pytest.raises(ValidationError, match="Recording has not been transcribed"):
            await load_letter_sources(session, user.id, recording.id, [], None)

    @pytest.mark.asyncio
    async def test_other_users_recording_is_not_found(self, session, colleague, recording):
        with pytest.raises(NotFoundError):
            await load_letter_sources(session, colleague.id, recording.id, [], None)

    @pytest.mark.asyncio
    async def test_missing_documents_are_named(self, session, user, document):
        with pytest.raises(NotFoundError, match="Documents not found: doc-x"):
            await load_letter_sources(session, user.id, None, [document.id, "doc-x"], None)

    @pytest.mark.asyncio
    async def test_documents_must_be_processed(self, session, user, document):
        document.status = DocumentStatus.PROCESSING
        session.add(document)
        await session.commit()

        with pytest.raises(ValidationError) as exc_info:
            await load_letter_sources(session, user.id, None, [document.id], None)

        assert exc_info.value.details == {"document_ids": [document.id]}


class TestGenerateLetter:
    @pytest.mark.asyncio
    async def test_generates_draft(self, session, llm_client, user, recording):
        llm_client.queue(anchored_letter(recording.id))
        request = LetterGenerateRequest(
            letter_type=LetterType.FOLLOW_UP, recording_id=recording.id, user_input="Review in three months"
        )

        result = await generate_letter(session, llm_client, user, request)

        letter = result.letter
        assert letter.status == LetterStatus.DRAFT
        assert letter.subspecialty == Subspecialty.INTERVENTIONAL
        assert "{{SOURCE" not in letter.content_draft
        assert letter.content_draft.startswith("Dear Dr Brown,")
        assert len(letter.source_anchors) == 2
        assert letter.model_id == llm_client.requests[0].model_id
        assert letter.hallucination_risk_score is not None
        assert result.style_source == StyleSource.DEFAULT

        sent = llm_client.requests[0]
        assert sent.system_prompt == SYSTEM_PROMPT
        assert sent.purpose == "letter_generation"
        assert TRANSCRIPT in sent.prompt
        assert "I reviewed [Patient Name] in clinic" in sent.prompt

        entries = await AuditLogRepository(session).list(filters={"action": "letter.generate"})
        assert entries[0].resource_id == letter.id
        assert entries[0].get_details()["style_source"] == "default"

    @pytest.mark.asyncio
    async def test_patient_identifiers_never_reach_the_model(self, session, user):
        session.add(
            Recording(
                id="rec-phi",
                user_id=user.id,
                mode=RecordingMode.DICTATION,
                status=RecordingStatus.TRANSCRIBED,
                transcript_text="John Smith reports less breathlessness.",
            )
        )
        await session.commit()
        client = PatientEchoClient()
        request = LetterGenerateRequest(
            letter_type=LetterType.FOLLOW_UP,
            recording_id="rec-phi",
            patient=PatientPHI(name="John Smith", date_of_birth="1965-03-07"),
        )

        result = await generate_letter(session, client, user, request)

        assert "John Smith" not in client.prompts[0]
        assert result.letter.content_draft == "John Smith is improving."

    @pytest.mark.asyncio
    async def test_subspecialty_profile_conditions_prompt(self, session, llm_client, user, recording):
        await create_style_profile(session, user.id, Subspecialty.INTERVENTIONAL, {"greeting_style": "formal"})
        await update_style_profile(session, user.id, Subspecialty.INTERVENTIONAL, {"total_edits_analyzed": 8})
        llm_client.queue("Thank you for seeing him.")

        result = await generate_letter(
            session, llm_client, user, LetterGenerateRequest(letter_type=LetterType.FOLLOW_UP, recording_id=recording.id)
        )

        assert result.style_source == StyleSource.SUBSPECIALTY
        assert "# PHYSICIAN STYLE PREFERENCES (Interventional)" in llm_client.requests[0].prompt

    @pytest.mark.asyncio
    async def test_style_can_be_switched_off(self, session, llm_client, user, recording):
        await create_style_profile(session, user.id, Subspecialty.INTERVENTIONAL, {"greeting_style": "formal"})
        await update_style_profile(session, user.id, Subspecialty.INTERVENTIONAL, {"total_edits_analyzed": 8})
        user.set_settings({"style_mode": "off"})
        session.add(user)
        await session.commit()
        llm_client.queue("Thank you for seeing him.")

        result = await generate_letter(
            session, llm_client, user, LetterGenerateRequest(letter_type=LetterType.FOLLOW_UP, recording_id=recording.id)
        )

        assert result.style_source == StyleSource.DEFAULT
        assert "PHYSICIAN STYLE PREFERENCES" not in llm_client.requests[0].prompt

    @pytest.mark.asyncio
    async def test_failed_generation_is_saved(self, session, llm_client, user, recording):
        user_id = user.id
        llm_client.queue(ExternalServiceError("llm", "model unavailable"))

        with pytest.raises(ExternalServiceError):
            await generate_letter(
                session,
                llm_client,
                user,
                LetterGenerateRequest(letter_type=LetterType.FOLLOW_UP, recording_id=recording.id),
            )

        letters, total = await LetterRepository(session).list_for_user(user_id, 10, 0)
        assert total == 1
        assert letters[0].status == LetterStatus.FAILED
        assert letters[0].generation_error == "llm: model unavailable"


class TestLetterLifecycle:
    @pytest.mark.asyncio
    async def test_get_is_owner_scoped(self, session, user, colleague):
        letter = await add_letter(session, user.id)

        assert (await get_letter(session, user.id, letter.id)).id == letter.id
        with pytest.raises(NotFoundError):
            await get_letter(session, colleague.id, letter.id)

    @pytest.mark.asyncio
    async def test_list_pages(self, session, user):
        for _ in range(3):
            await add_letter(session, user.id)
        await add_letter(session, user.id, LetterStatus.APPROVED)

        first = await list_letters(session, user.id, page=1, limit=2)
        drafts = await list_letters(session, user.id, status=LetterStatus.DRAFT)

        assert first.total == 4
        assert len(first.letters) == 2
        assert first.has_more
        assert drafts.total == 3
        assert not drafts.has_more

    @pytest.mark.asyncio
    async def test_first_edit_starts_review(self, session, user):
        letter = await add_letter(session, user.id)

        updated = await update_letter_content(session, user.id, letter.id, "Edited text")

        assert updated.content_draft == "Edited text"
        assert updated.status == LetterStatus.IN_REVIEW
        started = updated.review_started_at
        assert started is not None

        again = await update_letter_content(session, user.id, letter.id, "Edited twice")
        assert again.review_started_at == started

    @pytest.mark.asyncio
    async def test_approved_letters_are_read_only(self, session, user):
        letter = await add_letter(session, user.id, LetterStatus.APPROVED)

        with pytest.raises(ValidationError, match="Cannot edit approved letter"):
            await update_letter_content(session, user.id, letter.id, "Edited")
        with pytest.raises(ValidationError, match="Cannot delete approved letter"):
            await delete_letter(session, user.id, letter.id)

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, session, user):
        letter = await add_letter(session, user.id)

        await delete_letter(session, user.id, letter.id)

        with pytest.raises(NotFoundError):
            await get_letter(session, user.id, letter.id)
        assert (await LetterRepository(session).get_by_id(letter.id)).deleted_at is not None
        entries = await AuditLogRepository(session).list(filters={"action": "letter.delete"})
        assert len(entries) == 1
