from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import ChatRequest
from services.knowledge_base.KnowledgeService import KnowledgeService
from services.knowledge_base.models import ChatResult

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("")
async def chat(
    request: Request,
    body: ChatRequest,
    _: None = Depends(verify_api_key),
) -> ChatResult:
    """Run retrieval gating and evidence collection for one chat turn.

    Args:
        request (Request): FastAPI request (provides app.state.knowledge_service).
        body (ChatRequest): The turn, its history and optional digests.
        _ (None): Auth dependency result (unused).

    Returns:
        ChatResult: Gate decision, query plan and evidence pack for the answer model.
    """
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    return await knowledge_service.chat(
        owner_id=body.owner_id,
        query=body.query,
        context=body.context,
        digests=body.digests,
        memory_hint=body.memory_hint,
        limit=body.limit,
    )
