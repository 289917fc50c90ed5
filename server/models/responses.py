from pydantic import BaseModel

from shared.clients.rag.models.ChunkPoint import IndexedDocument


class BlobUploadResponse(BaseModel):
    blob_ref: str
    display_name: str
    mime_type: str | None
    size_bytes: int


class DocumentListResponse(BaseModel):
    owner_id: str
    documents: list[IndexedDocument]
    total: int


class ErrorResponse(BaseModel):
    error: str
    detail: str
