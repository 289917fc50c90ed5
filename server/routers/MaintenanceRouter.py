from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import PurgeRequest, RebuildDigestsRequest, RehydrateRequest
from services.knowledge_base.KnowledgeService import KnowledgeService
from services.knowledge_base.models import PurgeResult, RebuildResult, RehydrateResult

router = APIRouter(prefix="/knowledge", tags=["maintenance"], dependencies=[Depends(verify_api_key)])


@router.post("/purge")
async def purge_expired(request: Request, body: PurgeRequest) -> PurgeResult:
    """Purge staged blobs whose retention period has passed.

    Meant to be called by a scheduler; running it twice with the same now
    purges nothing the second time.
    """
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    return await knowledge_service.purge_expired(owner_id=body.owner_id, now=body.now)


@router.post("/{owner_id}/rehydrate")
async def rehydrate(request: Request, owner_id: str, body: RehydrateRequest) -> RehydrateResult:
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    return await knowledge_service.rehydrate(owner_id, mode=body.mode, persona_hint=body.persona_hint)


@router.post("/{owner_id}/digests/rebuild")
async def rebuild_digests(request: Request, owner_id: str, body: RebuildDigestsRequest) -> RebuildResult:
    knowledge_service: KnowledgeService = request.app.state.knowledge_service
    return await knowledge_service.rebuild_digests(owner_id, persona_hint=body.persona_hint)
