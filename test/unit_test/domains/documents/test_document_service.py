"""
Unit tests for the clinical document service.
"""

import pytest

from dictatemed.core.database.repositories import DocumentRepository
from dictatemed.core.errors import ExternalServiceError, NotFoundError, ValidationError
from dictatemed.core.models.domain.enums import DocumentStatus, DocumentType
from dictatemed.core.models.io.documents import DocumentConfirm, DocumentCreate
from dictatemed.domains.documents.service import (
    confirm_document_upload,
    create_document,
    delete_document,
    get_document,
    list_documents,
    process_document,
)

ECHO_TEXT = "Transthoracic echo. LVEF 55%. Mild mitral regurgitation."


def echo_upload(mime_type: str = "text/plain") -> DocumentCreate:
    return DocumentCreate(
        filename="echo.txt", mime_type=mime_type, size_bytes=len(ECHO_TEXT), document_type=DocumentType.ECHO_REPORT
    )


async def uploaded_document(session, storage, s3_client, user, content: bytes = ECHO_TEXT.encode(), **kwargs) -> str:
    created = await create_document(session, storage, user, echo_upload(**kwargs))
    await confirm_document_upload(session, user, created.id, DocumentConfirm())
    document = await DocumentRepository(session).get_by_id(created.id)
    s3_client.objects[document.storage_key] = content
    return created.id


class TestCreateDocument:
    @pytest.mark.asyncio
    async def test_presigned_upload(self, session, storage, user):
        created = await create_document(session, storage, user, echo_upload("application/pdf"))

        document = await DocumentRepository(session).get_by_id(created.id)
        assert document.status == DocumentStatus.UPLOADING
        assert document.document_type == DocumentType.ECHO_REPORT
        assert document.storage_key.endswith(f"{created.id}.pdf")
        assert "op=put_object" in created.upload_url

    @pytest.mark.asyncio
    async def test_rejects_unsupported_type(self, session, storage, user):
        with pytest.raises(ValidationError, match="Invalid file type"):
            await create_document(session, storage, user, echo_upload("image/jpeg"))

    @pytest.mark.asyncio
    async def test_confirm_once(self, session, storage, user):
        created = await create_document(session, storage, user, echo_upload())

        read = await confirm_document_upload(session, user, created.id, DocumentConfirm(size_bytes=900))

        assert read.status == DocumentStatus.UPLOADED
        assert read.size_bytes == 900
        with pytest.raises(ValidationError, match="already been confirmed"):
            await confirm_document_upload(session, user, created.id, DocumentConfirm())


class TestProcessDocument:
    @pytest.mark.asyncio
    async def test_extracts_text(self, session, storage, s3_client, user):
        document_id = await uploaded_document(session, storage, s3_client, user)

        read = await process_document(session, storage, user, document_id)

        assert read.status == DocumentStatus.PROCESSED
        assert read.extracted_text == ECHO_TEXT
        assert read.processing_error is None

    @pytest.mark.asyncio
    async def test_unreadable_file_fails(self, session, storage, s3_client, user):
        document_id = await uploaded_document(session, storage, s3_client, user, b"not a pdf", mime_type="application/pdf")

        with pytest.raises(ValidationError, match="Document processing failed"):
            await process_document(session, storage, user, document_id)

        document = await DocumentRepository(session).get_by_id(document_id)
        await session.refresh(document)
        assert document.status == DocumentStatus.FAILED
        assert document.processing_error.startswith("Could not read PDF")

    @pytest.mark.asyncio
    async def test_failed_documents_can_be_reprocessed(self, session, storage, s3_client, user):
        document_id = await uploaded_document(session, storage, s3_client, user)
        document = await DocumentRepository(session).get_by_id(document_id)
        document.status = DocumentStatus.FAILED
        await DocumentRepository(session).update(document)

        read = await process_document(session, storage, user, document_id)

        assert read.status == DocumentStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_requires_upload(self, session, storage, user):
        created = await create_document(session, storage, user, echo_upload())

        with pytest.raises(ValidationError, match="status: UPLOADING"):
            await process_document(session, storage, user, created.id)

    @pytest.mark.asyncio
    async def test_missing_object(self, session, storage, user):
        created = await create_document(session, storage, user, echo_upload())
        await confirm_document_upload(session, user, created.id, DocumentConfirm())

        with pytest.raises(ExternalServiceError):
            await process_document(session, storage, user, created.id)
        assert (await DocumentRepository(session).get_by_id(created.id)).status == DocumentStatus.UPLOADED


class TestReadAndDelete:
    @pytest.mark.asyncio
    async def test_get_and_list(self, session, storage, s3_client, user, colleague):
        document_id = await uploaded_document(session, storage, s3_client, user)
        await process_document(session, storage, user, document_id)
        await create_document(session, storage, user, echo_upload())

        read = await get_document(session, storage, user, document_id)
        processed = await list_documents(session, user, status=DocumentStatus.PROCESSED)

        assert "op=get_object" in read.download_url
        assert (await list_documents(session, user)).total == 2
        assert [d.id for d in processed.documents] == [document_id]
        with pytest.raises(NotFoundError):
            await get_document(session, storage, colleague, document_id)

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, session, storage, user):
        created = await create_document(session, storage, user, echo_upload())

        await delete_document(session, user, created.id)

        with pytest.raises(NotFoundError):
            await get_document(session, storage, user, created.id)
        assert (await DocumentRepository(session).get_by_id(created.id)).deleted_at is not None
