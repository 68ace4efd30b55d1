"""
Clinical Document Endpoints.

Upload reports used as letter sources and extract their text.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.models.domain.enums import DocumentStatus
from dictatemed.core.models.io.documents import (
    DocumentConfirm,
    DocumentCreate,
    DocumentCreateResult,
    DocumentList,
    DocumentRead,
)
from dictatemed.domains.documents import service
from dictatemed.server.services.deps import CurrentUserDep, StorageDep

router = APIRouter(tags=["documents"])


@router.post(
    "",
    response_model=DocumentCreateResult,
    status_code=status.HTTP_201_CREATED,
    summary="Create Document",
    responses={400: {"description": "Unsupported file type"}},
)
async def create_document(
    body: DocumentCreate, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> DocumentCreateResult:
    return await service.create_document(session, storage, user, body)


@router.get("", response_model=DocumentList, summary="List Documents")
async def list_documents(
    user: CurrentUserDep,
    document_status: Optional[DocumentStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> DocumentList:
    return await service.list_documents(session, user, document_status, page, limit)


@router.get(
    "/{document_id}",
    response_model=DocumentRead,
    summary="Get Document",
    responses={404: {"description": "Document not found"}},
)
async def get_document(
    document_id: str, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> DocumentRead:
    return await service.get_document(session, storage, user, document_id)


@router.patch(
    "/{document_id}",
    response_model=DocumentRead,
    summary="Confirm Document Upload",
    responses={400: {"description": "Upload already confirmed"}, 404: {"description": "Document not found"}},
)
async def confirm_document(
    document_id: str, body: DocumentConfirm, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> DocumentRead:
    return await service.confirm_document_upload(session, user, document_id, body)


@router.post(
    "/{document_id}/process",
    response_model=DocumentRead,
    summary="Process Document",
    description="Extract the document's text so it can be used as a letter source.",
    responses={400: {"description": "Wrong status or unreadable file"}, 404: {"description": "Document not found"}},
)
async def process_document(
    document_id: str, user: CurrentUserDep, storage: StorageDep, session: AsyncSession = Depends(get_session)
) -> DocumentRead:
    return await service.process_document(session, storage, user, document_id)


@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Document",
    responses={404: {"description": "Document not found"}},
)
async def delete_document(
    document_id: str, user: CurrentUserDep, session: AsyncSession = Depends(get_session)
) -> Response:
    await service.delete_document(session, user, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
