from pydantic import BaseModel, Field

from shared.stores.meta.models.DocumentDigest import DocumentDigest
from services.knowledge_base.models import ContextMessage, RehydrateMode, UploadFile


class UploadDocumentsRequest(BaseModel):
    files: list[UploadFile]
    persona_hint: str | None = None


class RehydrateRequest(BaseModel):
    mode: RehydrateMode = "missing-only"
    persona_hint: str | None = None


class RebuildDigestsRequest(BaseModel):
    persona_hint: str | None = None


class PurgeRequest(BaseModel):
    """Purge across all owners unless owner_id is set; now defaults to the server clock."""

    owner_id: str | None = None
    now: int | None = None


class SearchRequest(BaseModel):
    query: str
    limit: int | None = Field(default=None, ge=1)


class ChatRequest(BaseModel):
    owner_id: str
    query: str
    context: list[ContextMessage] = []
    digests: list[DocumentDigest] | None = None
    memory_hint: str | None = None
    limit: int | None = Field(default=None, ge=1)
