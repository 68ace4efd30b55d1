"""
Unit tests for the referral document service.
"""

import json
import re

import pytest

from dictatemed.core.database.entities.referrals import ReferralDocument
from dictatemed.core.database.repositories import AuditLogRepository, ReferralDocumentRepository
from dictatemed.core.errors import ExternalServiceError, NotFoundError, ValidationError
from dictatemed.core.models.domain.enums import FastExtractionStatus, ReferralStatus
from dictatemed.core.models.io.referrals import AppliedPatient, ApplyReferralRequest, ReferralCreate
from dictatemed.domains.referrals.extraction import ExtractionParseError
from dictatemed.domains.referrals.service import (
    apply_referral,
    confirm_referral_upload,
    create_referral_batch,
    create_referral_document,
    delete_referral_document,
    extract_fast_patient_data,
    extract_referral_text,
    extract_structured_data,
    full_extraction_status,
    get_referral_document,
    get_referral_status,
    list_referral_documents,
)

REFERRAL_TEXT = "Dear Doctor,\nThank you for seeing Mrs Jane Citizen (DOB 05/03/1960, MRN 884422) with chest pain."

FAST_RESPONSE = json.dumps(
    {
        "name": "Mrs Jane Citizen",
        "dob": "1960-03-05",
        "mrn": "884422",
        "name_confidence": 0.95,
        "dob_confidence": 0.95,
        "mrn_confidence": 0.9,
    }
)

STRUCTURED_RESPONSE = json.dumps(
    {
        "patient": {"full_name": "Mrs Jane Citizen", "date_of_birth": "1960-03-05", "confidence": 0.95},
        "gp": {"full_name": "Dr Amy Brown", "confidence": 0.9},
        "referrer": None,
        "referral_context": {"reason_for_referral": "Chest pain", "confidence": 0.85},
        "overall_confidence": 0.9,
    }
)


async def add_referral(
    session,
    user,
    status=ReferralStatus.UPLOADED,
    content_text=None,
    mime_type="text/plain",
    fast_extraction_status=None,
) -> ReferralDocument:
    document = ReferralDocument(
        user_id=user.id,
        practice_id=user.practice_id,
        filename="referral.txt",
        mime_type=mime_type,
        size_bytes=120,
        storage_key=f"referrals/{user.practice_id}/2026/01/ref.txt",
        status=status,
        content_text=content_text,
        fast_extraction_status=fast_extraction_status,
    )
    session.add(document)
    await session.commit()
    await session.refresh(document)
    return document


def upload(filename: str = "referral.pdf", mime_type: str = "application/pdf") -> ReferralCreate:
    return ReferralCreate(filename=filename, mime_type=mime_type, size_bytes=2048)


class TestCreateReferral:
    @pytest.mark.asyncio
    async def test_returns_presigned_upload(self, session, storage, user):
        result = await create_referral_document(session, storage, user, upload())

        assert result.upload_url.startswith("http://mock-s3/")
        assert "op=put_object" in result.upload_url

        document = await ReferralDocumentRepository(session).get_by_id(result.id)
        assert document.status == ReferralStatus.UPLOADED
        assert document.practice_id == user.practice_id
        assert re.fullmatch(rf"referrals/{user.practice_id}/\d{{4}}/\d{{2}}/{result.id}\.pdf", document.storage_key)

        entries = await AuditLogRepository(session).list(filters={"action": "referral.create"})
        assert entries[0].resource_id == result.id

    @pytest.mark.asyncio
    async def test_rejects_unsupported_type(self, session, storage, user):
        with pytest.raises(ValidationError, match="Invalid file type"):
            await create_referral_document(session, storage, user, upload("scan.png", "image/png"))

    @pytest.mark.asyncio
    async def test_batch_reports_per_file_errors(self, session, storage, user):
        files = [upload("a.pdf"), upload("b.png", "image/png"), upload("c.txt", "text/plain")]

        result = await create_referral_batch(session, storage, user, files)

        assert [f.filename for f in result.files] == ["a.pdf", "c.txt"]
        assert [e.filename for e in result.errors] == ["b.png"]
        _, total = await ReferralDocumentRepository(session).list_for_practice(user.practice_id, 10, 0)
        assert total == 2

    @pytest.mark.asyncio
    async def test_batch_limits(self, session, storage, user):
        with pytest.raises(ValidationError, match="At least one file is required"):
            await create_referral_batch(session, storage, user, [])
        with pytest.raises(ValidationError, match="Maximum 10 files allowed per batch"):
            await create_referral_batch(session, storage, user, [upload(f"{i}.pdf") for i in range(11)])


class TestReadReferrals:
    @pytest.mark.asyncio
    async def test_practice_members_can_read(self, session, storage, user, colleague):
        document = await add_referral(session, user)

        read = await get_referral_document(session, storage, colleague, document.id)

        assert read.id == document.id
        assert "op=get_object" in read.download_url

    @pytest.mark.asyncio
    async def test_other_practices_cannot_read(self, session, storage, user, outsider):
        document = await add_referral(session, user)

        with pytest.raises(NotFoundError):
            await get_referral_document(session, storage, outsider, document.id)

    @pytest.mark.asyncio
    async def test_list_filters_and_pages(self, session, user, outsider):
        for _ in range(3):
            await add_referral(session, user)
        await add_referral(session, user, status=ReferralStatus.FAILED)
        await add_referral(session, outsider)

        page = await list_referral_documents(session, user, page=1, limit=3)
        failed = await list_referral_documents(session, user, status=ReferralStatus.FAILED)

        assert page.total == 4
        assert len(page.documents) == 3
        assert page.has_more
        assert failed.total == 1
        assert not failed.has_more

    @pytest.mark.asyncio
    async def test_confirm_upload(self, session, user):
        document = await add_referral(session, user)

        read = await confirm_referral_upload(session, user, document.id, 4096)

        assert read.size_bytes == 4096

    @pytest.mark.asyncio
    async def test_confirm_after_processing_is_rejected(self, session, user):
        document = await add_referral(session, user, status=ReferralStatus.TEXT_EXTRACTED)

        with pytest.raises(ValidationError, match="already been processed"):
            await confirm_referral_upload(session, user, document.id, 4096)


class TestDeleteReferral:
    @pytest.mark.asyncio
    async def test_removes_row_and_file(self, session, storage, s3_client, user):
        document = await add_referral(session, user)
        document_id, key = document.id, document.storage_key

        await delete_referral_document(session, storage, user, document_id)

        assert s3_client.deleted == [key]
        assert await ReferralDocumentRepository(session).get_by_id(document_id) is None

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_block(self, session, storage, s3_client, user):
        s3_client.fail_deletes = True
        document = await add_referral(session, user)
        document_id = document.id

        await delete_referral_document(session, storage, user, document_id)

        assert await ReferralDocumentRepository(session).get_by_id(document_id) is None

    @pytest.mark.asyncio
    async def test_applied_referrals_are_kept(self, session, storage, user):
        document = await add_referral(session, user, status=ReferralStatus.APPLIED)

        with pytest.raises(ValidationError, match="has been applied"):
            await delete_referral_document(session, storage, user, document.id)


class TestExtractReferralText:
    @pytest.mark.asyncio
    async def test_plain_text(self, session, storage, s3_client, user):
        document = await add_referral(session, user)
        s3_client.objects[document.storage_key] = REFERRAL_TEXT.encode("utf-8")

        result = await extract_referral_text(session, storage, user, document.id)

        assert result.status == ReferralStatus.TEXT_EXTRACTED
        assert result.text_length == len(REFERRAL_TEXT)
        assert result.preview == REFERRAL_TEXT
        await session.refresh(document)
        assert document.content_text == REFERRAL_TEXT

    @pytest.mark.asyncio
    async def test_unreadable_pdf_fails_document(self, session, storage, s3_client, user):
        document = await add_referral(session, user, mime_type="application/pdf")
        s3_client.objects[document.storage_key] = b"not a pdf"

        with pytest.raises(ValidationError, match="Text extraction failed"):
            await extract_referral_text(session, storage, user, document.id)

        await session.refresh(document)
        assert document.status == ReferralStatus.FAILED
        assert document.processing_error.startswith("Could not read PDF")

    @pytest.mark.asyncio
    async def test_missing_object(self, session, storage, user):
        document = await add_referral(session, user)

        with pytest.raises(ExternalServiceError):
            await extract_referral_text(session, storage, user, document.id)

    @pytest.mark.asyncio
    async def test_wrong_status(self, session, storage, user):
        document = await add_referral(session, user, status=ReferralStatus.EXTRACTED)

        with pytest.raises(ValidationError, match="status: EXTRACTED"):
            await extract_referral_text(session, storage, user, document.id)


class TestFastExtraction:
    @pytest.mark.asyncio
    async def test_success(self, session, llm_client, user):
        document = await add_referral(session, user, ReferralStatus.TEXT_EXTRACTED, REFERRAL_TEXT)
        llm_client.queue(FAST_RESPONSE)

        result = await extract_fast_patient_data(session, llm_client, user, document.id)

        assert result.status == FastExtractionStatus.COMPLETE
        assert result.data.patient_name.value == "Mrs Jane Citizen"
        assert result.data.mrn.value == "884422"
        assert llm_client.requests[0].purpose == "referral_fast_extraction"
        assert REFERRAL_TEXT in llm_client.requests[0].prompt

        await session.refresh(document)
        assert document.fast_extraction_status == FastExtractionStatus.COMPLETE
        assert document.get_fast_extraction_data()["date_of_birth"]["value"] == "1960-03-05"

    @pytest.mark.asyncio
    async def test_only_one_extraction_runs(self, session, llm_client, user):
        document = await add_referral(
            session,
            user,
            ReferralStatus.TEXT_EXTRACTED,
            REFERRAL_TEXT,
            fast_extraction_status=FastExtractionStatus.PROCESSING,
        )

        result = await extract_fast_patient_data(session, llm_client, user, document.id)

        assert result.status == FastExtractionStatus.PROCESSING
        assert result.error == "Extraction already in progress"
        assert llm_client.requests == []

    @pytest.mark.asyncio
    async def test_failure_is_returned(self, session, llm_client, user):
        document = await add_referral(session, user, ReferralStatus.TEXT_EXTRACTED, REFERRAL_TEXT)
        llm_client.queue("I could not find any patient details.")

        result = await extract_fast_patient_data(session, llm_client, user, document.id)

        assert result.status == FastExtractionStatus.FAILED
        assert result.error == "No valid JSON found in response"
        await session.refresh(document)
        assert document.fast_extraction_status == FastExtractionStatus.FAILED
        assert document.fast_extraction_completed_at is not None

    @pytest.mark.asyncio
    async def test_requires_text(self, session, llm_client, user):
        document = await add_referral(session, user)

        with pytest.raises(ValidationError, match="text has not been extracted"):
            await extract_fast_patient_data(session, llm_client, user, document.id)


class TestStructuredExtraction:
    @pytest.mark.asyncio
    async def test_success(self, session, llm_client, user):
        document = await add_referral(session, user, ReferralStatus.TEXT_EXTRACTED, REFERRAL_TEXT)
        llm_client.queue(STRUCTURED_RESPONSE)

        result = await extract_structured_data(session, llm_client, user, document.id)

        assert result.status == ReferralStatus.EXTRACTED
        assert result.extracted_data.gp.full_name == "Dr Amy Brown"
        await session.refresh(document)
        assert document.status == ReferralStatus.EXTRACTED
        assert document.processed_at is not None
        assert document.get_extracted_data()["overall_confidence"] == 0.9

    @pytest.mark.asyncio
    async def test_failure_marks_document(self, session, llm_client, user):
        document = await add_referral(session, user, ReferralStatus.TEXT_EXTRACTED, REFERRAL_TEXT)
        llm_client.queue("not json")

        with pytest.raises(ExtractionParseError):
            await extract_structured_data(session, llm_client, user, document.id)

        await session.refresh(document)
        assert document.status == ReferralStatus.FAILED
        assert document.processing_error == "Structured extraction failed: No valid JSON found in response"

    @pytest.mark.asyncio
    async def test_requires_extracted_text(self, session, llm_client, user):
        document = await add_referral(session, user)

        with pytest.raises(ValidationError, match="status: UPLOADED"):
            await extract_structured_data(session, llm_client, user, document.id)


class TestApplyAndStatus:
    @pytest.mark.asyncio
    async def test_apply(self, session, user):
        document = await add_referral(session, user, ReferralStatus.EXTRACTED, REFERRAL_TEXT)
        request = ApplyReferralRequest(consultation_id="consult-1", patient=AppliedPatient(full_name="Jane Citizen"))

        result = await apply_referral(session, user, document.id, request)

        assert result.status == ReferralStatus.APPLIED
        assert result.consultation_id == "consult-1"
        await session.refresh(document)
        assert json.loads(document.applied_data)["patient"] == {"full_name": "Jane Citizen"}

    @pytest.mark.asyncio
    async def test_apply_requires_extraction(self, session, user):
        document = await add_referral(session, user, ReferralStatus.TEXT_EXTRACTED, REFERRAL_TEXT)
        request = ApplyReferralRequest(patient=AppliedPatient(full_name="Jane Citizen"))

        with pytest.raises(ValidationError, match="Cannot apply referral with status: TEXT_EXTRACTED"):
            await apply_referral(session, user, document.id, request)

    @pytest.mark.parametrize(
        "status, expected",
        [
            (ReferralStatus.UPLOADED, FastExtractionStatus.PENDING),
            (ReferralStatus.TEXT_EXTRACTED, FastExtractionStatus.PENDING),
            (ReferralStatus.EXTRACTED, FastExtractionStatus.COMPLETE),
            (ReferralStatus.APPLIED, FastExtractionStatus.COMPLETE),
            (ReferralStatus.FAILED, FastExtractionStatus.FAILED),
        ],
    )
    def test_full_extraction_status(self, status, expected):
        assert full_extraction_status(status) == expected

    @pytest.mark.asyncio
    async def test_processing_status(self, session, user):
        document = await add_referral(session, user, ReferralStatus.TEXT_EXTRACTED, REFERRAL_TEXT)

        status = await get_referral_status(session, user, document.id)

        assert status.status == ReferralStatus.TEXT_EXTRACTED
        assert status.fast_extraction_status == FastExtractionStatus.PENDING
        assert status.full_extraction_status == FastExtractionStatus.PENDING
        assert status.error is None
