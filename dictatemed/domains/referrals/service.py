"""
Referral document service.

Referral letters are uploaded straight to object storage through a
pre-signed URL, confirmed, and then processed in three steps: plain text
extraction, a fast patient-identifier pass and a full structured extraction.
The clinician reviews the result and applies it to a consultation.

All reads and writes are scoped to the caller's practice.
"""

from __future__ import annotations

import time
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.base import dump_json, utc_now
from dictatemed.core.database.entities.practices import User
from dictatemed.core.database.entities.referrals import ReferralDocument
from dictatemed.core.database.repositories import AuditLogRepository, ReferralDocumentRepository
from dictatemed.core.errors import ExternalServiceError, NotFoundError, ValidationError
from dictatemed.core.llm import TextGenerationClient, TextGenerationRequest, generate_text_with_retry
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import FastExtractionStatus, ReferralStatus
from dictatemed.core.models.domain.referrals import (
    ALLOWED_REFERRAL_MIME_TYPES,
    LOW_CONFIDENCE_THRESHOLD,
    is_allowed_mime_type,
    is_file_size_valid,
)
from dictatemed.core.models.io.referrals import (
    ApplyReferralRequest,
    ApplyReferralResult,
    BatchFileError,
    BatchFileResult,
    FastExtractionResult,
    ReferralBatchResult,
    ReferralCreate,
    ReferralCreateResult,
    ReferralList,
    ReferralProcessingStatus,
    ReferralRead,
    StructuredExtractionResult,
    TextExtractionResult,
)
from dictatemed.core.storage import ObjectStorage
from dictatemed.server.core.config import settings

from .extraction import (
    FAST_EXTRACTION_SYSTEM_PROMPT,
    STRUCTURED_EXTRACTION_SYSTEM_PROMPT,
    TEXT_PREVIEW_LENGTH,
    ExtractionParseError,
    UnsupportedDocumentError,
    build_fast_extraction_prompt,
    build_structured_extraction_prompt,
    extract_text,
    get_low_confidence_sections,
    has_fast_extraction_data,
    parse_fast_extraction,
    parse_structured_extraction,
)

logger = get_logger(__name__)

RESOURCE_REFERRAL = "referral_document"
MAX_LIST_LIMIT = 100

FAST_EXTRACTION_MAX_TOKENS = 256
FAST_EXTRACTION_MAX_RETRIES = 2
FAST_EXTRACTION_INITIAL_DELAY_MS = 500
FAST_EXTRACTION_MAX_DELAY_MS = 2000
STRUCTURED_EXTRACTION_MAX_TOKENS = 4096

_EXTENSIONS = {"application/pdf": "pdf", "text/plain": "txt"}


def build_storage_key(practice_id: str, document_id: str, mime_type: str) -> str:
    """``referrals/{practice}/{yyyy}/{mm}/{id}.{ext}``"""
    now = utc_now()
    ext = _EXTENSIONS.get(mime_type, "bin")
    return f"referrals/{practice_id}/{now.year}/{now.month:02d}/{document_id}.{ext}"


def _validate_file(mime_type: str, size_bytes: int) -> None:
    if not is_allowed_mime_type(mime_type):
        raise ValidationError(f"Invalid file type. Allowed types: {', '.join(ALLOWED_REFERRAL_MIME_TYPES)}")
    if not is_file_size_valid(size_bytes):
        raise ValidationError("File size must be between 0 and 10MB")


def _stage_referral(session: AsyncSession, storage: ObjectStorage, user: User, data: ReferralCreate):
    _validate_file(data.mime_type, data.size_bytes)
    document = ReferralDocument(
        user_id=user.id,
        practice_id=user.practice_id,
        filename=data.filename,
        mime_type=data.mime_type,
        size_bytes=data.size_bytes,
        storage_key="",
        status=ReferralStatus.UPLOADED,
    )
    document.storage_key = build_storage_key(user.practice_id, document.id, data.mime_type)
    upload_url, expires_at = storage.get_upload_url(document.storage_key, data.mime_type)

    ReferralDocumentRepository(session).stage(document)
    AuditLogRepository(session).record(
        user.id,
        "referral.create",
        RESOURCE_REFERRAL,
        document.id,
        {"filename": data.filename, "mime_type": data.mime_type, "size_bytes": data.size_bytes},
    )
    return document, upload_url, expires_at


async def create_referral_document(
    session: AsyncSession, storage: ObjectStorage, user: User, data: ReferralCreate
) -> ReferralCreateResult:
    """
    Register a referral upload and return a pre-signed PUT URL.

    Raises:
        ValidationError: Unsupported MIME type or size out of range
    """
    document, upload_url, expires_at = _stage_referral(session, storage, user, data)
    await session.commit()
    logger.info(
        f"Referral document created: {document.id}",
        extra={"practice_id": user.practice_id, "filename": data.filename},
    )
    return ReferralCreateResult(id=document.id, upload_url=upload_url, expires_at=expires_at)


async def create_referral_batch(
    session: AsyncSession, storage: ObjectStorage, user: User, files: list[ReferralCreate]
) -> ReferralBatchResult:
    """
    Register several uploads at once.

    Each file is validated on its own; a bad file lands in ``errors`` and
    does not stop the others.

    Raises:
        ValidationError: No files, or more than the batch limit
    """
    max_files = settings.upload.max_batch_files
    if not files:
        raise ValidationError("At least one file is required")
    if len(files) > max_files:
        raise ValidationError(f"Maximum {max_files} files allowed per batch")

    result = ReferralBatchResult()
    for data in files:
        try:
            document, upload_url, expires_at = _stage_referral(session, storage, user, data)
        except ValidationError as e:
            result.errors.append(BatchFileError(filename=data.filename, error=e.message))
            continue
        result.files.append(
            BatchFileResult(id=document.id, filename=data.filename, upload_url=upload_url, expires_at=expires_at)
        )
    await session.commit()

    logger.info(
        f"Referral batch created: {len(result.files)} ok, {len(result.errors)} rejected",
        extra={"practice_id": user.practice_id},
    )
    return result


async def _get_document(session: AsyncSession, user: User, document_id: str) -> ReferralDocument:
    document = await ReferralDocumentRepository(session).get_for_practice(document_id, user.practice_id)
    if document is None:
        raise NotFoundError("Referral document not found")
    return document


def to_read_model(document: ReferralDocument, download_url: Optional[str] = None) -> ReferralRead:
    return ReferralRead.model_validate(
        {
            **{name: getattr(document, name) for name in ReferralRead.model_fields if hasattr(document, name)},
            "extracted_data": document.get_extracted_data(),
            "fast_extraction_data": document.get_fast_extraction_data(),
            "download_url": download_url,
        }
    )


async def get_referral_document(
    session: AsyncSession, storage: ObjectStorage, user: User, document_id: str
) -> ReferralRead:
    document = await _get_document(session, user, document_id)
    download_url, _ = storage.get_download_url(document.storage_key)
    return to_read_model(document, download_url)


async def list_referral_documents(
    session: AsyncSession,
    user: User,
    status: Optional[ReferralStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> ReferralList:
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    page = max(1, page)
    offset = (page - 1) * limit
    documents, total = await ReferralDocumentRepository(session).list_for_practice(
        user.practice_id, limit, offset, {"status": status}
    )
    return ReferralList(
        documents=[to_read_model(d) for d in documents],
        total=total,
        page=page,
        limit=limit,
        has_more=offset + len(documents) < total,
    )


async def confirm_referral_upload(
    session: AsyncSession, user: User, document_id: str, size_bytes: int
) -> ReferralRead:
    """Record the uploaded size once the client finished the PUT."""
    document = await _get_document(session, user, document_id)
    if document.status != ReferralStatus.UPLOADED:
        raise ValidationError("Referral document has already been processed")

    document.size_bytes = size_bytes
    document.updated_at = utc_now()
    ReferralDocumentRepository(session).stage(document)
    AuditLogRepository(session).record(
        user.id, "referral.upload_confirm", RESOURCE_REFERRAL, document.id, {"size_bytes": size_bytes}
    )
    await session.commit()
    await session.refresh(document)
    logger.info(f"Referral upload confirmed: {document.id}", extra={"size_bytes": size_bytes})
    return to_read_model(document)


async def delete_referral_document(
    session: AsyncSession, storage: ObjectStorage, user: User, document_id: str
) -> None:
    """
    Delete a referral and its stored file.

    A storage failure is logged and does not block removing the row.

    Raises:
        NotFoundError: Unknown document
        ValidationError: The referral has been applied to a consultation
    """
    document = await _get_document(session, user, document_id)
    if document.status == ReferralStatus.APPLIED:
        raise ValidationError("Cannot delete a referral document that has been applied to a consultation")

    try:
        await storage.delete_object(document.storage_key)
    except ExternalServiceError as e:
        logger.error(f"Failed to delete referral file {document.storage_key}: {e}", extra={"document_id": document.id})

    filename = document.filename
    await session.delete(document)
    AuditLogRepository(session).record(user.id, "referral.delete", RESOURCE_REFERRAL, document_id, {"filename": filename})
    await session.commit()
    logger.info(f"Referral document deleted: {document_id}")


async def extract_referral_text(
    session: AsyncSession, storage: ObjectStorage, user: User, document_id: str
) -> TextExtractionResult:
    """
    Extract plain text from an uploaded referral.

    Raises:
        ValidationError: Wrong status, unsupported type or unreadable file
    """
    document = await _get_document(session, user, document_id)
    if document.status != ReferralStatus.UPLOADED:
        raise ValidationError(f"Cannot extract text from document with status: {ReferralStatus(document.status).value}")

    content = await storage.get_object_bytes(document.storage_key)
    try:
        text = extract_text(content, document.mime_type)
    except UnsupportedDocumentError as e:
        raise ValidationError(str(e)) from e
    except ExtractionParseError as e:
        document.status = ReferralStatus.FAILED
        document.processing_error = str(e)
        await ReferralDocumentRepository(session).update(document)
        raise ValidationError(f"Text extraction failed: {e}") from e

    document.content_text = text
    document.status = ReferralStatus.TEXT_EXTRACTED
    document.processing_error = None
    await ReferralDocumentRepository(session).update(document)

    logger.info(f"Referral text extracted: {document.id}", extra={"text_length": len(text)})
    return TextExtractionResult(
        id=document.id,
        status=ReferralStatus.TEXT_EXTRACTED,
        text_length=len(text),
        preview=text[:TEXT_PREVIEW_LENGTH],
    )


async def extract_fast_patient_data(
    session: AsyncSession, client: TextGenerationClient, user: User, document_id: str
) -> FastExtractionResult:
    """
    Pull patient name, date of birth and MRN from the referral text.

    Only one fast extraction runs per document. A concurrent request gets a
    PROCESSING result back instead of starting a second model call. Model
    and parse failures are stored on the document and returned as FAILED
    rather than raised.

    Raises:
        NotFoundError: Unknown document
        ValidationError: Text has not been extracted yet
    """
    repo = ReferralDocumentRepository(session)
    document = await _get_document(session, user, document_id)
    if not document.content_text:
        raise ValidationError("Document text has not been extracted")

    if not await repo.claim_fast_extraction(document.id):
        logger.info(f"Fast extraction already in progress for {document.id}")
        return FastExtractionResult(
            document_id=document.id,
            status=FastExtractionStatus.PROCESSING,
            error="Extraction already in progress",
        )
    await session.refresh(document)

    model_id = settings.llm.standard_model
    started = time.monotonic()
    try:
        response = await generate_text_with_retry(
            client,
            TextGenerationRequest(
                prompt=build_fast_extraction_prompt(document.content_text),
                system_prompt=FAST_EXTRACTION_SYSTEM_PROMPT,
                model_id=model_id,
                max_tokens=FAST_EXTRACTION_MAX_TOKENS,
                temperature=0,
                purpose="referral_fast_extraction",
            ),
            max_retries=FAST_EXTRACTION_MAX_RETRIES,
            initial_delay_ms=FAST_EXTRACTION_INITIAL_DELAY_MS,
            max_delay_ms=FAST_EXTRACTION_MAX_DELAY_MS,
        )
        data = parse_fast_extraction(response.content, model_id, int((time.monotonic() - started) * 1000))
    except (ExternalServiceError, ExtractionParseError) as e:
        document.fast_extraction_status = FastExtractionStatus.FAILED
        document.fast_extraction_error = str(e)
        document.fast_extraction_completed_at = utc_now()
        await repo.update(document)
        logger.error(f"Fast extraction failed for {document.id}: {e}")
        return FastExtractionResult(document_id=document.id, status=FastExtractionStatus.FAILED, error=str(e))

    if not has_fast_extraction_data(data):
        logger.warning(f"Fast extraction found no patient identifiers in {document.id}")

    document.fast_extraction_status = FastExtractionStatus.COMPLETE
    document.set_fast_extraction_data(data.model_dump(mode="json"))
    document.fast_extraction_completed_at = utc_now()
    document.updated_at = utc_now()
    repo.stage(document)
    AuditLogRepository(session).record(
        user.id,
        "referral.extract_fast",
        RESOURCE_REFERRAL,
        document.id,
        {"overall_confidence": data.overall_confidence, "processing_time_ms": data.processing_time_ms},
    )
    await session.commit()

    logger.info(
        f"Fast extraction complete for {document.id}",
        extra={"overall_confidence": data.overall_confidence, "processing_time_ms": data.processing_time_ms},
    )
    return FastExtractionResult(document_id=document.id, status=FastExtractionStatus.COMPLETE, data=data)


async def extract_structured_data(
    session: AsyncSession, client: TextGenerationClient, user: User, document_id: str
) -> StructuredExtractionResult:
    """
    Full structured extraction of patient, GP, referrer and referral context.

    On failure the document is marked FAILED and the error is re-raised.
    """
    repo = ReferralDocumentRepository(session)
    document = await _get_document(session, user, document_id)
    if document.status != ReferralStatus.TEXT_EXTRACTED or not document.content_text:
        raise ValidationError(
            f"Cannot extract structured data from document with status: {ReferralStatus(document.status).value}"
        )

    model_id = settings.llm.standard_model
    try:
        response = await generate_text_with_retry(
            client,
            TextGenerationRequest(
                prompt=build_structured_extraction_prompt(document.content_text),
                system_prompt=STRUCTURED_EXTRACTION_SYSTEM_PROMPT,
                model_id=model_id,
                max_tokens=STRUCTURED_EXTRACTION_MAX_TOKENS,
                temperature=0,
                purpose="referral_structured_extraction",
            ),
        )
        data = parse_structured_extraction(response.content, model_id)
    except (ExternalServiceError, ExtractionParseError) as e:
        document.status = ReferralStatus.FAILED
        document.processing_error = f"Structured extraction failed: {e}"
        await repo.update(document)
        logger.error(f"Structured extraction failed for {document.id}: {e}")
        raise

    low_confidence = get_low_confidence_sections(data, LOW_CONFIDENCE_THRESHOLD)
    if low_confidence:
        logger.info(f"Low confidence sections in {document.id}: {', '.join(low_confidence)}")

    now = utc_now()
    document.set_extracted_data(data.model_dump(mode="json"))
    document.status = ReferralStatus.EXTRACTED
    document.processing_error = None
    document.processed_at = now
    document.updated_at = now
    repo.stage(document)
    AuditLogRepository(session).record(
        user.id,
        "referral.extract_structured",
        RESOURCE_REFERRAL,
        document.id,
        {"overall_confidence": data.overall_confidence, "model_used": model_id},
    )
    await session.commit()

    logger.info(f"Structured extraction complete for {document.id}", extra={"overall_confidence": data.overall_confidence})
    return StructuredExtractionResult(id=document.id, status=ReferralStatus.EXTRACTED, extracted_data=data)


async def apply_referral(
    session: AsyncSession, user: User, document_id: str, request: ApplyReferralRequest
) -> ApplyReferralResult:
    """Store the clinician-confirmed data and link the referral to a consultation."""
    document = await _get_document(session, user, document_id)
    if document.status != ReferralStatus.EXTRACTED:
        raise ValidationError(f"Cannot apply referral with status: {ReferralStatus(document.status).value}")

    now = utc_now()
    document.applied_data = dump_json(request.model_dump(mode="json", exclude_none=True))
    document.consultation_id = request.consultation_id
    document.status = ReferralStatus.APPLIED
    document.processed_at = now
    document.updated_at = now
    ReferralDocumentRepository(session).stage(document)
    AuditLogRepository(session).record(
        user.id,
        "referral.apply",
        RESOURCE_REFERRAL,
        document.id,
        {
            "consultation_id": request.consultation_id,
            "has_gp": request.gp is not None,
            "has_referrer": request.referrer is not None,
        },
    )
    await session.commit()

    logger.info(f"Referral applied: {document.id}", extra={"consultation_id": request.consultation_id})
    return ApplyReferralResult(
        id=document.id,
        status=ReferralStatus.APPLIED,
        consultation_id=request.consultation_id,
        applied_at=now,
    )


def full_extraction_status(status: ReferralStatus) -> FastExtractionStatus:
    if status in (ReferralStatus.EXTRACTED, ReferralStatus.APPLIED):
        return FastExtractionStatus.COMPLETE
    if status == ReferralStatus.FAILED:
        return FastExtractionStatus.FAILED
    return FastExtractionStatus.PENDING


async def get_referral_status(session: AsyncSession, user: User, document_id: str) -> ReferralProcessingStatus:
    document = await _get_document(session, user, document_id)
    status = ReferralStatus(document.status)
    return ReferralProcessingStatus(
        id=document.id,
        status=status,
        fast_extraction_status=document.fast_extraction_status or FastExtractionStatus.PENDING,
        fast_extraction_data=document.get_fast_extraction_data(),
        full_extraction_status=full_extraction_status(status),
        error=document.fast_extraction_error or document.processing_error,
    )
