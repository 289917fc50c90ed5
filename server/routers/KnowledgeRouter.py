from fastapi import APIRouter, Depends, Query, Request

from shared.exceptions.errors import InvalidInputError
from server.dependencies.auth import verify_api_key
from server.models.requests import SearchRequest, UploadDocumentsRequest
from server.models.responses import BlobUploadResponse, DocumentListResponse
from services.knowledge_base.KnowledgeService import KnowledgeService
from services.knowledge_base.models import EnsureStoreResult, Evidence, UploadDocumentsResult

router = APIRouter(prefix="/knowledge", tags=["knowledge"], dependencies=[Depends(verify_api_key)])


@router.post("/{owner_id}/store")
async def ensure_store(request: Request, owner_id: str) -> EnsureStoreResult:
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    return await knowledge_service.ensure_knowledge_store(owner_id)


@router.post("/{owner_id}/blobs")
async def upload_blob(
    request: Request,
    owner_id: str,
    display_name: str = Query(..., min_length=1),
) -> BlobUploadResponse:
    """Store the raw request body as a blob.

    The returned blob_ref is what POST /knowledge/{owner_id}/documents expects
    in its file list.

    Args:
        request (Request): FastAPI request; the body is the file content.
        owner_id (str): Owner the blob belongs to.
        display_name (str): Original file name.

    Returns:
        BlobUploadResponse: Reference and size of the stored blob.
    """
    data = await request.body()
    if not data:
        raise InvalidInputError("Request body is empty")
    mime_type = request.headers.get("content-type")
    blob_ref = await request.app.state.blob_store.do_put(owner_id, data, display_name)
    return BlobUploadResponse(blob_ref=blob_ref, display_name=display_name, mime_type=mime_type, size_bytes=len(data))


@router.post("/{owner_id}/documents")
async def upload_documents(request: Request, owner_id: str, body: UploadDocumentsRequest) -> UploadDocumentsResult:
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    return await knowledge_service.upload_documents(owner_id, body.files, persona_hint=body.persona_hint)


@router.get("/{owner_id}/documents")
async def list_documents(request: Request, owner_id: str) -> DocumentListResponse:
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    documents = await knowledge_service.list_documents(owner_id)
    return DocumentListResponse(owner_id=owner_id, documents=documents, total=len(documents))


@router.delete("/{owner_id}/documents/{document_ref:path}")
async def delete_document(request: Request, owner_id: str, document_ref: str) -> DocumentListResponse:
    """Delete one document; returns the documents that remain."""
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    documents = await knowledge_service.delete_document(owner_id, document_ref)
    return DocumentListResponse(owner_id=owner_id, documents=documents, total=len(documents))


@router.post("/{owner_id}/search")
async def search(request: Request, owner_id: str, body: SearchRequest) -> Evidence:
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    return await knowledge_service.search(owner_id, body.query, body.limit)
