"""
Referral Document Endpoints.

Register uploads (singly or in batches), confirm them, run the extraction
steps and apply the confirmed data to a consultation. Referrals are shared
across the clinician's practice.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.models.domain.enums import ReferralStatus
from dictatemed.core.models.io.referrals import (
    ApplyReferralRequest,
    ApplyReferralResult,
    FastExtractionResult,
    ReferralBatchCreate,
    ReferralBatchResult,
    ReferralConfirm,
    ReferralCreate,
    ReferralCreateResult,
    ReferralList,
    ReferralProcessingStatus,
    ReferralRead,
    StructuredExtractionResult,
    TextExtractionResult,
)
from dictatemed.domains.referrals import service
from dictatemed.server.services.deps import CurrentUserDep, StorageDep, TextClientDep

router = APIRouter(tags=["referrals"])


@router.get(
    "",
    response_model=ReferralList,
    summary="List Referrals",
    description="List the practice's referral documents, newest first.",
)
async def list_referrals(
    user: CurrentUserDep,
    referral_status: Optional[ReferralStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> ReferralList:
    return await service.list_referral_documents(session, user, referral_status, page, limit)


@router.post(
    "",
    response_model=ReferralCreateResult,
    status_code=status.HTTP_201_CREATED,
    summary="Create Referral",
    description="Register a referral upload and receive a pre-signed URL for the file bytes.",
    responses={400: {"description": "Unsupported file type or size"}},
)
async def create_referral(
    body: ReferralCreate, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> ReferralCreateResult:
    return await service.create_referral_document(session, storage, user, body)


@router.post(
    "/batch",
    response_model=ReferralBatchResult,
    summary="Create Referrals in Batch",
    description="Register several uploads at once. Invalid files are reported per file in `errors`.",
    responses={400: {"description": "No files or too many files"}},
)
async def create_referral_batch(
    body: ReferralBatchCreate, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> ReferralBatchResult:
    return await service.create_referral_batch(session, storage, user, body.files)


@router.get(
    "/{document_id}",
    response_model=ReferralRead,
    summary="Get Referral",
    description="Read a referral with a pre-signed download URL.",
    responses={404: {"description": "Referral not found"}},
)
async def get_referral(
    document_id: str, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> ReferralRead:
    return await service.get_referral_document(session, storage, user, document_id)


@router.patch(
    "/{document_id}",
    response_model=ReferralRead,
    summary="Confirm Referral Upload",
    responses={400: {"description": "Already processed"}, 404: {"description": "Referral not found"}},
)
async def confirm_referral(
    document_id: str, body: ReferralConfirm, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> ReferralRead:
    return await service.confirm_referral_upload(session, user, document_id, body.size_bytes)


@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Referral",
    responses={400: {"description": "Referral already applied"}, 404: {"description": "Referral not found"}},
)
async def delete_referral(
    document_id: str, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> Response:
    await service.delete_referral_document(session, storage, user, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{document_id}/extract-text",
    response_model=TextExtractionResult,
    summary="Extract Referral Text",
    responses={400: {"description": "Wrong status or unsupported file"}, 404: {"description": "Referral not found"}},
)
async def extract_text(
    document_id: str, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> TextExtractionResult:
    return await service.extract_referral_text(session, storage, user, document_id)


@router.post(
    "/{document_id}/extract-fast",
    response_model=FastExtractionResult,
    summary="Extract Patient Identifiers",
    description=(
        "Quickly extract the patient's name, date of birth and MRN. Failures are reported in the "
        "response body; a request made while another extraction runs returns PROCESSING."
    ),
    responses={400: {"description": "Text not extracted yet"}, 404: {"description": "Referral not found"}},
)
async def extract_fast(
    document_id: str, user: CurrentUserDep, client: TextClientDep, session: AsyncSession = Depends(get_session)
) -> FastExtractionResult:
    return await service.extract_fast_patient_data(session, client, user, document_id)


@router.post(
    "/{document_id}/extract-structured",
    response_model=StructuredExtractionResult,
    summary="Extract Referral Data",
    description="Full extraction of patient, GP, referrer and referral context.",
    responses={
        400: {"description": "Text not extracted yet"},
        404: {"description": "Referral not found"},
        502: {"description": "The language model is unavailable"},
    },
)
async def extract_structured(
    document_id: str, user: CurrentUserDep, client: TextClientDep, session: AsyncSession = Depends(get_session)
) -> StructuredExtractionResult:
    return await service.extract_structured_data(session, client, user, document_id)


@router.post(
    "/{document_id}/apply",
    response_model=ApplyReferralResult,
    summary="Apply Referral",
    description="Apply clinician-confirmed referral data to a consultation.",
    responses={400: {"description": "Referral not extracted"}, 404: {"description": "Referral not found"}},
)
async def apply_referral(
    document_id: str,
    body: ApplyReferralRequest,
    user: CurrentUserDep,
    session: AsyncSession = Depends(get_session),
) -> ApplyReferralResult:
    return await service.apply_referral(session, user, document_id, body)


@router.get(
    "/{document_id}/status",
    response_model=ReferralProcessingStatus,
    summary="Get Referral Processing Status",
    responses={404: {"description": "Referral not found"}},
)
async def get_status(
    document_id: str, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> ReferralProcessingStatus:
    return await service.get_referral_status(session, user, document_id)
