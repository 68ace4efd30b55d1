"""
Clinical document service.

Documents (echo, angiogram and ECG reports and the like) follow the same
upload flow as recordings. Processing pulls the text out of the stored file
so the document can feed letter generation.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.base import new_id, utc_now
from dictatemed.core.database.entities.documents import Document
from dictatemed.core.database.entities.practices import User
from dictatemed.core.database.repositories import AuditLogRepository, DocumentRepository
from dictatemed.core.errors import NotFoundError, ValidationError
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import DocumentStatus
from dictatemed.core.models.io.documents import (
    ALLOWED_DOCUMENT_TYPES,
    DocumentConfirm,
    DocumentCreate,
    DocumentCreateResult,
    DocumentList,
    DocumentRead,
)
from dictatemed.core.storage import ObjectStorage
from dictatemed.domains.referrals.extraction import ExtractionParseError, UnsupportedDocumentError, extract_text

logger = get_logger(__name__)

RESOURCE_DOCUMENT = "document"
MAX_LIST_LIMIT = 100


def to_read_model(document: Document, download_url: Optional[str] = None) -> DocumentRead:
    data = {name: getattr(document, name) for name in DocumentRead.model_fields if hasattr(document, name)}
    data["extracted_data"] = document.get_extracted_data()
    data["download_url"] = download_url
    return DocumentRead.model_validate(data)


async def _get_document(session: AsyncSession, user: User, document_id: str) -> Document:
    document = await DocumentRepository(session).get_for_user(document_id, user.id)
    if document is None:
        raise NotFoundError("Document not found")
    return document


async def create_document(
    session: AsyncSession, storage: ObjectStorage, user: User, data: DocumentCreate
) -> DocumentCreateResult:
    if data.mime_type not in ALLOWED_DOCUMENT_TYPES:
        raise ValidationError(f"Invalid file type. Allowed types: {', '.join(ALLOWED_DOCUMENT_TYPES)}")

    now = utc_now()
    document_id = new_id()
    ext = "pdf" if data.mime_type == "application/pdf" else "txt"
    key = f"documents/{user.id}/{now.year}/{now.month:02d}/{document_id}.{ext}"
    document = Document(
        id=document_id,
        user_id=user.id,
        filename=data.filename,
        mime_type=data.mime_type,
        size_bytes=data.size_bytes,
        document_type=data.document_type,
        storage_key=key,
        status=DocumentStatus.UPLOADING,
    )
    upload_url, expires_at = storage.get_upload_url(key, data.mime_type)

    DocumentRepository(session).stage(document)
    AuditLogRepository(session).record(
        user.id,
        "document.create",
        RESOURCE_DOCUMENT,
        document.id,
        {"filename": data.filename, "document_type": data.document_type.value},
    )
    await session.commit()

    logger.info(f"Document created: {document.id}", extra={"document_type": data.document_type.value})
    return DocumentCreateResult(id=document.id, upload_url=upload_url, expires_at=expires_at)


async def get_document(session: AsyncSession, storage: ObjectStorage, user: User, document_id: str) -> DocumentRead:
    document = await _get_document(session, user, document_id)
    download_url = None
    if document.storage_key and document.status != DocumentStatus.UPLOADING:
        download_url, _ = storage.get_download_url(document.storage_key)
    return to_read_model(document, download_url)


async def list_documents(
    session: AsyncSession, user: User, status: Optional[DocumentStatus] = None, page: int = 1, limit: int = 20
) -> DocumentList:
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    page = max(1, page)
    offset = (page - 1) * limit
    documents, total = await DocumentRepository(session).list_for_user(user.id, limit, offset, {"status": status})
    return DocumentList(
        documents=[to_read_model(d) for d in documents],
        total=total,
        page=page,
        limit=limit,
        has_more=offset + len(documents) < total,
    )


async def confirm_document_upload(
    session: AsyncSession, user: User, document_id: str, data: DocumentConfirm
) -> DocumentRead:
    document = await _get_document(session, user, document_id)
    if document.status != DocumentStatus.UPLOADING:
        raise ValidationError("Document upload has already been confirmed")

    document.status = DocumentStatus.UPLOADED
    if data.size_bytes:
        document.size_bytes = data.size_bytes
    document.updated_at = utc_now()
    DocumentRepository(session).stage(document)
    AuditLogRepository(session).record(user.id, "document.upload_confirm", RESOURCE_DOCUMENT, document.id)
    await session.commit()
    await session.refresh(document)
    return to_read_model(document)


async def process_document(session: AsyncSession, storage: ObjectStorage, user: User, document_id: str) -> DocumentRead:
    """
    Extract the text of an uploaded document.

    An unreadable file marks the document FAILED.
    """
    repo = DocumentRepository(session)
    document = await _get_document(session, user, document_id)
    if document.status not in (DocumentStatus.UPLOADED, DocumentStatus.FAILED):
        raise ValidationError(f"Cannot process document with status: {DocumentStatus(document.status).value}")

    content = await storage.get_object_bytes(document.storage_key)
    document.status = DocumentStatus.PROCESSING
    await repo.update(document)

    try:
        text = extract_text(content, document.mime_type)
    except (UnsupportedDocumentError, ExtractionParseError) as e:
        document.status = DocumentStatus.FAILED
        document.processing_error = str(e)
        await repo.update(document)
        logger.warning(f"Document processing failed for {document.id}: {e}")
        raise ValidationError(f"Document processing failed: {e}") from e

    document.extracted_text = text
    document.status = DocumentStatus.PROCESSED
    document.processing_error = None
    document.updated_at = utc_now()
    repo.stage(document)
    AuditLogRepository(session).record(
        user.id, "document.process", RESOURCE_DOCUMENT, document.id, {"text_length": len(text)}
    )
    await session.commit()
    await session.refresh(document)

    logger.info(f"Document processed: {document.id}", extra={"text_length": len(text)})
    return to_read_model(document)


async def delete_document(session: AsyncSession, user: User, document_id: str) -> None:
    document = await _get_document(session, user, document_id)
    now = utc_now()
    document.deleted_at = now
    document.updated_at = now
    DocumentRepository(session).stage(document)
    AuditLogRepository(session).record(user.id, "document.delete", RESOURCE_DOCUMENT, document.id)
    await session.commit()
    logger.info(f"Document deleted: {document.id}")
