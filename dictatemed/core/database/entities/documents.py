"""
Clinical document entity model.

Documents are uploaded reports (echo, angiogram, ECG, ...) that serve as
sources for letter generation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Field

from dictatemed.core.models.domain.enums import DocumentStatus, DocumentType

from ..base import Base, dump_json, load_json, new_id, utc_now


class DocumentBase(Base):
    """Base fields for a clinical document."""

    user_id: str = Field(foreign_key="users.id", index=True)
    filename: str = Field(description="Original filename")
    mime_type: str = Field(description="MIME type of the uploaded file")
    size_bytes: int = Field(default=0, ge=0)
    document_type: DocumentType = Field(default=DocumentType.OTHER)
    status: DocumentStatus = Field(default=DocumentStatus.UPLOADING, index=True)
    storage_key: Optional[str] = Field(default=None)
    extracted_text: Optional[str] = Field(default=None, description="Plain text pulled from the file")
    extracted_data: Optional[str] = Field(default=None, description="JSON of structured findings")
    processing_error: Optional[str] = Field(default=None)


class Document(DocumentBase, table=True):
    """Persistent clinical document.

    Table: documents
    """

    __tablename__ = "documents"
    __table_args__ = ({"extend_existing": True},)

    id: str = Field(default_factory=new_id, primary_key=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    def get_extracted_data(self) -> Optional[Dict[str, Any]]:
        return load_json(self.extracted_data, None)

    def set_extracted_data(self, data: Optional[Dict[str, Any]]) -> None:
        self.extracted_data = dump_json(data) if data is not None else None

    def __repr__(self) -> str:
        return f"Document(id={self.id}, type={self.document_type}, status={self.status})"
