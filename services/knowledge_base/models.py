"""Value objects exchanged between the knowledge base services."""

from typing import Literal

from pydantic import BaseModel, Field

from shared.clients.rag.models.ChunkPoint import IndexedDocument

GateMode = Literal["heuristic", "llm-gate"]
RehydrateMode = Literal["missing-only", "all"]


class ContextMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class UploadFile(BaseModel):
    """A file already written to the blob store and handed to ingestion."""

    blob_ref: str
    display_name: str
    mime_type: str | None = None
    size_bytes: int | None = None


class UploadOutcome(BaseModel):
    """Per-file result of upload_documents."""

    upload_id: str
    display_name: str
    status: str
    document_ref: str | None = None
    chunk_count: int = 0
    error: str | None = None


class IngestResult(BaseModel):
    document_ref: str
    chunk_count: int


class EnsureStoreResult(BaseModel):
    store_ref: str
    created: bool


class UploadDocumentsResult(BaseModel):
    store_ref: str
    documents: list[UploadOutcome] = []


##########################################
################ GATING ##################
##########################################

class GateDecision(BaseModel):
    use_knowledge_base: bool
    reason: str
    mode: GateMode = "heuristic"
    matched_digest_signals: list[str] = []


class QueryRewrite(BaseModel):
    standalone_query: str
    alternates: list[str] = []


class QueryPlan(BaseModel):
    """What the chat pipeline decided, for debugging and display."""

    original_query: str
    standalone_query: str
    query_alternates: list[str] = []
    gate_used: bool
    gate_reason: str
    matched_digest_signals: list[str] = []
    alternate_query: str | None = None


##########################################
############### EVIDENCE #################
##########################################

class Citation(BaseModel):
    title: str
    uri: str | None = None


class Snippet(BaseModel):
    text: str
    citation_indices: list[int] = []


class Evidence(BaseModel):
    query: str
    citations: list[Citation] = []
    snippets: list[Snippet] = []
    grounded: bool = False
    retrieval_text: str = "NO_EVIDENCE"


class ChatResult(BaseModel):
    gate_decision: GateDecision
    query_plan: QueryPlan
    evidence: Evidence | None = None
    evidence_pack: str
    grounded: bool = False


##########################################
############## LIFECYCLE #################
##########################################

class RehydrateResult(BaseModel):
    rehydrated_count: int = 0
    skipped_count: int = 0
    documents: list[IndexedDocument] = []


class PurgeResult(BaseModel):
    purged_count: int = 0


class RebuildResult(BaseModel):
    rebuilt_count: int = 0
    skipped_count: int = 0


class StructuredDigest(BaseModel):
    """Shape the generative model is asked to return for a digest."""

    topics: list[str] = Field(default_factory=list)
    entities: list[str] = Field(default_factory=list)
    lexicalAnchors: list[str] = Field(default_factory=list)
    styleAnchors: list[str] = Field(default_factory=list)
    digestSummary: str = ""


class StructuredGate(BaseModel):
    useKnowledgeBase: bool
    reason: str = ""


class StructuredRewrite(BaseModel):
    standaloneQuery: str = ""
    alternates: list[str] = Field(default_factory=list)
    intent: str | None = None
    confidence: float | None = None
