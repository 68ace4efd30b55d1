"""
Letter generation and lifecycle service.

``generate_letter`` turns a transcribed recording, processed documents and
free-text notes into a draft:

1. Load and validate the sources
2. Replace patient identifiers with session tokens
3. Select a model and build the letter-type prompt
4. Condition the prompt on the clinician's style profile
5. Generate with retry, then restore identifiers
6. Verify source anchors, extract clinical values and flag hallucinations
7. Save the DRAFT with an audit entry

Reads and edits are scoped to the owning clinician and hide soft-deleted
letters.
"""

from __future__ import annotations

import time
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.base import utc_now
from dictatemed.core.database.entities.letters import Letter
from dictatemed.core.database.entities.practices import User
from dictatemed.core.database.repositories import (
    AuditLogRepository,
    DocumentRepository,
    LetterRepository,
    RecordingRepository,
)
from dictatemed.core.errors import ExternalServiceError, NotFoundError, ValidationError
from dictatemed.core.llm import TextGenerationClient, TextGenerationRequest, generate_text_with_retry
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import (
    DocumentStatus,
    LetterStatus,
    LetterType,
    ModelPreference,
    RecordingStatus,
    StyleSource,
    Subspecialty,
)
from dictatemed.core.models.domain.letters import (
    DocumentSource,
    LetterSources,
    PatientPHI,
    SpeakerSegment,
    TranscriptSource,
    UserInputSource,
)
from dictatemed.core.models.domain.style import StyleConditioningConfig
from dictatemed.core.models.io.letters import GenerationResult, LetterGenerateRequest, LetterList, LetterRead, LetterSummary
from dictatemed.core.monitoring import log_error, log_letter_generation
from dictatemed.domains.style.prompt_conditioner import build_style_conditioned_prompt, compute_overall_confidence

from .clinical_extraction import calculate_verification_rate, extract_clinical_values
from .hallucination import calculate_hallucination_risk, detect_hallucinations, recommend_approval
from .model_selection import select_model
from .phi import DeobfuscationMap, build_tokens, deobfuscate_phi, obfuscate_phi, validate_obfuscation
from .prompts import SYSTEM_PROMPT, PatientTokens, build_letter_prompt
from .source_anchoring import parse_source_anchors, validate_clinical_sources

logger = get_logger(__name__)

STYLE_MODE_SETTING = "style_mode"
MODEL_PREFERENCE_SETTING = "model_preference"
STYLE_MODE_OFF = "off"
STYLE_MODE_GLOBAL = "global"

PLACEHOLDER_PATIENT = PatientTokens(name="[Patient Name]", dob="[DOB]", medicare="[Medicare]", gender="[Gender]")


async def load_letter_sources(
    session: AsyncSession,
    user_id: str,
    recording_id: Optional[str],
    document_ids: List[str],
    user_input: Optional[str],
) -> LetterSources:
    """
    Collect the sources a letter may draw from.

    Raises:
        NotFoundError: A referenced recording or document does not exist
        ValidationError: A source is not ready, or there are no sources
    """
    transcript = None
    if recording_id:
        recording = await RecordingRepository(session).get_for_user(recording_id, user_id)
        if recording is None:
            raise NotFoundError("Recording not found")
        if recording.status != RecordingStatus.TRANSCRIBED or not recording.transcript_text:
            raise ValidationError("Recording has not been transcribed", details={"recording_id": recording_id})
        transcript = TranscriptSource(
            id=recording.id,
            text=recording.transcript_text,
            mode=recording.mode,
            speakers=[SpeakerSegment.model_validate(s) for s in recording.get_speakers()] or None,
        )

    documents: List[DocumentSource] = []
    if document_ids:
        found = {d.id: d for d in await DocumentRepository(session).get_many_for_user(document_ids, user_id)}
        missing = [doc_id for doc_id in document_ids if doc_id not in found]
        if missing:
            raise NotFoundError(f"Documents not found: {', '.join(missing)}")
        not_ready = [doc_id for doc_id in document_ids if found[doc_id].status != DocumentStatus.PROCESSED]
        if not_ready:
            raise ValidationError("Documents have not been processed", details={"document_ids": not_ready})
        for doc_id in document_ids:
            document = found[doc_id]
            documents.append(
                DocumentSource(
                    id=document.id,
                    type=document.document_type.value,
                    name=document.filename,
                    extracted_data=document.get_extracted_data() or {},
                    raw_text=document.extracted_text,
                )
            )

    sources = LetterSources(
        transcript=transcript,
        documents=documents,
        user_input=UserInputSource(text=user_input) if user_input and user_input.strip() else None,
    )
    if sources.count == 0:
        raise ValidationError("At least one source (recording, document or user input) is required")
    return sources


def obfuscate_sources(
    sources: LetterSources, phi: PatientPHI, session_id: str
) -> Tuple[LetterSources, DeobfuscationMap]:
    """Copy of ``sources`` with patient identifiers replaced by tokens."""
    mapping = DeobfuscationMap(tokens=build_tokens(phi, session_id), phi=phi)

    def obfuscate(text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        return obfuscate_phi(text, phi, session_id).obfuscated_text

    transcript = None
    if sources.transcript:
        transcript = sources.transcript.model_copy(
            update={
                "text": obfuscate(sources.transcript.text),
                "speakers": [
                    s.model_copy(update={"text": obfuscate(s.text)}) for s in sources.transcript.speakers
                ]
                if sources.transcript.speakers
                else None,
            }
        )
    documents = [d.model_copy(update={"raw_text": obfuscate(d.raw_text)}) for d in sources.documents]
    user_input = (
        sources.user_input.model_copy(update={"text": obfuscate(sources.user_input.text)})
        if sources.user_input
        else None
    )
    return LetterSources(transcript=transcript, documents=documents, user_input=user_input), mapping


def _sources_text(sources: LetterSources) -> str:
    parts = []
    if sources.transcript:
        parts.append(sources.transcript.text)
        parts.extend(s.text for s in sources.transcript.speakers or [])
    parts.extend(d.raw_text for d in sources.documents if d.raw_text)
    if sources.user_input:
        parts.append(sources.user_input.text)
    return "\n".join(parts)


def _resolve_subspecialty(request: LetterGenerateRequest, user: User) -> Optional[Subspecialty]:
    if request.subspecialty:
        return request.subspecialty
    for value in user.get_subspecialties():
        if value in Subspecialty.__members__:
            return Subspecialty(value)
    return None


def _resolve_model_preference(request: LetterGenerateRequest, user: User) -> Optional[ModelPreference]:
    if request.model_preference:
        return request.model_preference
    stored = user.get_settings().get(MODEL_PREFERENCE_SETTING)
    return ModelPreference(stored) if stored in [p.value for p in ModelPreference] else None


async def _mark_failed(session: AsyncSession, letter: Letter, error: str) -> None:
    letter.status = LetterStatus.FAILED
    letter.generation_error = error
    await LetterRepository(session).update(letter)


async def generate_letter(
    session: AsyncSession,
    client: TextGenerationClient,
    user: User,
    request: LetterGenerateRequest,
) -> GenerationResult:
    """
    Generate a letter draft.

    Args:
        session: Database session
        client: Text generation backend
        user: Clinician the letter is written for
        request: Letter type, sources and generation options

    Returns:
        GenerationResult with the saved DRAFT letter

    Raises:
        NotFoundError: A referenced source does not exist
        ValidationError: No usable sources, or identifiers survived obfuscation
        ExternalServiceError: Generation failed; the letter is saved as FAILED
    """
    sources = await load_letter_sources(
        session, user.id, request.recording_id, request.document_ids, request.user_input
    )
    subspecialty = _resolve_subspecialty(request, user)

    letter = Letter(
        user_id=user.id,
        recording_id=request.recording_id,
        letter_type=request.letter_type,
        status=LetterStatus.GENERATING,
        subspecialty=subspecialty,
    )
    letter.set_document_ids(request.document_ids)
    letter = await LetterRepository(session).create(letter)
    logger.info(f"Generating {request.letter_type.value} letter {letter.id}", extra={"user_id": user.id})

    prompt_sources = sources
    mapping: Optional[DeobfuscationMap] = None
    patient = PLACEHOLDER_PATIENT
    if request.patient:
        prompt_sources, mapping = obfuscate_sources(sources, request.patient, letter.id)
        is_safe, leaked = validate_obfuscation(_sources_text(prompt_sources), request.patient)
        if not is_safe:
            logger.error("PHI obfuscation failed", extra={"letter_id": letter.id, "leaked": leaked})
            await _mark_failed(session, letter, "PHI obfuscation failed")
            raise ValidationError("PHI obfuscation failed", details={"leaked_fields": leaked})
        tokens = mapping.tokens
        patient = PatientTokens(name=tokens.name, dob=tokens.dob, medicare=tokens.medicare, gender=tokens.gender)

    selection = select_model(request.letter_type, sources, _resolve_model_preference(request, user))
    prompt = build_letter_prompt(request.letter_type, prompt_sources, patient)

    style_mode = user.get_settings().get(STYLE_MODE_SETTING)
    if style_mode == STYLE_MODE_OFF:
        style_config = StyleConditioningConfig()
    else:
        prompt, _, style_config = await build_style_conditioned_prompt(
            session,
            prompt,
            user.id,
            None if style_mode == STYLE_MODE_GLOBAL else subspecialty,
            request.letter_type.value,
            request.style_overrides,
        )
    style_confidence = compute_overall_confidence(style_config.profile) if style_config.profile else None

    started = time.perf_counter()
    try:
        response = await generate_text_with_retry(
            client,
            TextGenerationRequest(
                prompt=prompt,
                system_prompt=SYSTEM_PROMPT,
                model_id=selection.model_id,
                max_tokens=selection.max_tokens,
                temperature=selection.temperature,
                purpose="letter_generation",
            ),
        )
    except ExternalServiceError as e:
        logger.error(f"Letter generation failed for {letter.id}: {e}", exc_info=True)
        log_error("LetterGenerationError", str(e), {"letter_id": letter.id, "model_id": selection.model_id})
        await _mark_failed(session, letter, str(e))
        raise
    duration_ms = int((time.perf_counter() - started) * 1000)

    content = deobfuscate_phi(response.content, mapping) if mapping else response.content
    parsed = parse_source_anchors(content, sources)
    if parsed.unverified_anchors:
        logger.warning(f"{len(parsed.unverified_anchors)} unverified source anchor(s) in letter {letter.id}")

    values = extract_clinical_values(content, parsed.anchors)
    flags = detect_hallucinations(content, sources, parsed.anchors, values)
    risk = calculate_hallucination_risk(flags)
    coverage = validate_clinical_sources(content, parsed.anchors)
    if not coverage.is_valid:
        logger.warning(f"Clinical source coverage below threshold for letter {letter.id}: {coverage.coverage:.1f}%")

    letter.status = LetterStatus.DRAFT
    letter.content_draft = parsed.letter_without_anchors
    letter.set_source_anchors([a.model_dump(mode="json") for a in parsed.anchors])
    letter.set_clinical_values([v.model_dump(mode="json") for v in values])
    letter.set_hallucination_flags([f.model_dump(mode="json") for f in flags])
    letter.hallucination_risk_score = risk.score
    letter.verification_rate = calculate_verification_rate(values)["rate"]
    letter.style_confidence = style_confidence
    letter.model_id = response.model_id
    letter.input_tokens = response.input_tokens
    letter.output_tokens = response.output_tokens
    letter.generation_duration_ms = duration_ms
    letter.updated_at = utc_now()
    LetterRepository(session).stage(letter)

    AuditLogRepository(session).record(
        user.id,
        "letter.generate",
        "letter",
        letter.id,
        {
            "letter_type": request.letter_type.value,
            "subspecialty": subspecialty.value if subspecialty else None,
            "model_used": response.model_id,
            "input_tokens": response.input_tokens,
            "output_tokens": response.output_tokens,
            "hallucination_risk": risk.level,
            "style_source": style_config.source.value,
            "style_confidence": style_confidence,
        },
    )
    await session.commit()
    await session.refresh(letter)

    log_letter_generation(letter.id, request.letter_type.value, risk.score, style_config.source.value)
    logger.info(
        f"Letter {letter.id} drafted",
        extra={"risk_score": risk.score, "verification_rate": letter.verification_rate, "duration_ms": duration_ms},
    )
    return GenerationResult(
        letter=LetterRead.from_entity(letter),
        model_reason=selection.reason,
        style_source=StyleSource(style_config.source),
        risk_level=risk.level,
        approval_recommendation=recommend_approval(flags).model_dump(),
    )


async def get_letter(session: AsyncSession, user_id: str, letter_id: str) -> Letter:
    letter = await LetterRepository(session).get_for_user(letter_id, user_id)
    if letter is None:
        raise NotFoundError("Letter not found")
    return letter


async def list_letters(
    session: AsyncSession,
    user_id: str,
    status: Optional[LetterStatus] = None,
    letter_type: Optional[LetterType] = None,
    page: int = 1,
    limit: int = 20,
) -> LetterList:
    """List a clinician's letters, newest first."""
    letters, total = await LetterRepository(session).list_for_user(
        user_id, limit, (page - 1) * limit, {"status": status, "letter_type": letter_type}
    )
    return LetterList(
        letters=[LetterSummary.model_validate(letter) for letter in letters],
        total=total,
        page=page,
        limit=limit,
        has_more=page * limit < total,
    )


async def update_letter_content(session: AsyncSession, user_id: str, letter_id: str, content: str) -> Letter:
    """
    Save clinician edits to a draft.

    The first edit moves the letter to IN_REVIEW and starts the review clock.

    Raises:
        NotFoundError: Unknown letter
        ValidationError: The letter is already approved
    """
    letter = await get_letter(session, user_id, letter_id)
    if letter.status == LetterStatus.APPROVED:
        raise ValidationError("Cannot edit approved letter")

    letter.content_draft = content
    letter.status = LetterStatus.IN_REVIEW
    if letter.review_started_at is None:
        letter.review_started_at = utc_now()
    letter = await LetterRepository(session).update(letter)
    logger.info(f"Letter {letter_id} content updated", extra={"user_id": user_id})
    return letter


async def delete_letter(session: AsyncSession, user_id: str, letter_id: str) -> None:
    """Soft-delete a letter that has not been approved."""
    letter = await get_letter(session, user_id, letter_id)
    if letter.status == LetterStatus.APPROVED:
        raise ValidationError("Cannot delete approved letter")

    letter.deleted_at = utc_now()
    LetterRepository(session).stage(letter)
    AuditLogRepository(session).record(user_id, "letter.delete", "letter", letter_id)
    await session.commit()
    logger.info(f"Letter {letter_id} deleted")
