"""Payload models stored with, and read back from, each chunk vector."""

from pydantic import BaseModel, field_validator


class ChunkPoint(BaseModel):
    """Metadata payload stored alongside each chunk vector in the chunk store.

    owner_id is mandatory and enforced on every write and search; a chunk
    without an owner would be visible to nobody or everybody.

    Attributes:
        owner_id:      Knowledge store namespace the chunk belongs to.
        document_ref:  Stable identifier of the document within that store.
        display_name:  Human readable name, used as citation title.
        chunk_index:   Zero-based position of this chunk within its version.
        chunk_text:    Raw text of the chunk.
        version:       Tag of the indexing run that wrote the chunk. Only one
                       version per document survives a completed replace.
        uri:           Optional link shown next to the citation.
    """

    owner_id: str
    document_ref: str
    display_name: str
    chunk_index: int
    chunk_text: str
    version: str
    uri: str | None = None

    @field_validator("owner_id", "document_ref")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value


class SearchHit(BaseModel):
    """One chunk returned by a vector search, best match first."""

    document_ref: str
    display_name: str
    chunk_index: int
    chunk_text: str
    score: float
    uri: str | None = None


class IndexedDocument(BaseModel):
    """A document that currently has chunks in the store."""

    ref: str
    display_name: str
