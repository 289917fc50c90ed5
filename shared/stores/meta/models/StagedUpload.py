from typing import Literal

from pydantic import BaseModel

UploadStatus = Literal["staged", "ingested", "skipped_duplicate", "failed", "rehydrated", "purged"]

# rows whose blob can be fed through ingestion again; a skipped_duplicate blob
# would overwrite the chunks of the document that won its name
REHYDRATABLE_STATUSES: tuple[str, ...] = ("staged", "ingested", "rehydrated")


class StagedUpload(BaseModel):
    """Ledger row for one blob handed to ingestion.

    expires_at is fixed at creation and never extended; once it has passed the
    blob is purged and the row transitions to "purged" exactly once.
    """

    id: str
    owner_id: str
    blob_ref: str
    display_name: str
    mime_type: str | None = None
    size_bytes: int | None = None
    store_ref: str
    status: UploadStatus = "staged"
    document_ref: str | None = None
    ingest_error: str | None = None
    created_at: int
    ingested_at: int | None = None
    expires_at: int
    deleted_at: int | None = None
