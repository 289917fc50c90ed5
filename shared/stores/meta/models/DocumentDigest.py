from typing import Literal

from pydantic import BaseModel

DigestStatus = Literal["active", "deleted"]


class DocumentDigest(BaseModel):
    """Compact per-document summary used for retrieval gating and query rewriting.

    A digest exists for a document iff its indexing succeeded at least once.
    Deleting the document flips status to "deleted"; rows are never removed.

    Attributes:
        owner_id:        Knowledge store namespace.
        document_ref:    Chunk store identifier of the document.
        display_name:    Name as uploaded.
        normalized_name: Trimmed, whitespace-collapsed, lower-cased display name.
        blob_ref:        Blob the document was indexed from, if known.
        topics:          3-8 subject keywords.
        entities:        3-12 named things.
        lexical_anchors: 3-12 distinctive terms used for overlap matching.
        style_anchors:   3-8 tone/format markers.
        summary:         At most 300 characters.
        status:          "active" or "deleted".
        updated_at:      Epoch ms of the last write.
        deleted_at:      Epoch ms of the deletion.
    """

    owner_id: str
    document_ref: str
    display_name: str
    normalized_name: str
    blob_ref: str | None = None
    topics: list[str] = []
    entities: list[str] = []
    lexical_anchors: list[str] = []
    style_anchors: list[str] = []
    summary: str = ""
    status: DigestStatus = "active"
    updated_at: int = 0
    deleted_at: int | None = None

    def signal_terms(self) -> list[str]:
        """Terms matched against the standalone query by the retrieval gate."""
        return [*self.topics, *self.entities, *self.lexical_anchors, *self.style_anchors]
