from pydantic import BaseModel


class KnowledgeStore(BaseModel):
    """Per-owner namespace record."""

    owner_id: str
    store_ref: str
    created_at: int
