import uuid

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig
from shared.stores.meta.MetaStoreInterface import MetaStoreInterface
from shared.stores.meta.models.StagedUpload import StagedUpload, UploadStatus
from services.knowledge_base.models import UploadFile


class StagedUploadLedger:
    """Writes the staged upload rows that track every blob through ingestion."""

    def __init__(self, helper_config: HelperConfig, meta_store: MetaStoreInterface, config: KnowledgeConfig):
        self.logging = helper_config.get_logger()
        self._meta_store = meta_store
        self._config = config

    async def stage(
        self,
        owner_id: str,
        store_ref: str,
        upload: UploadFile,
        now: int,
        expires_at: int | None = None,
        status: UploadStatus = "staged",
    ) -> StagedUpload:
        """Create a row. expires_at defaults to now + retention period."""
        row = StagedUpload(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            blob_ref=upload.blob_ref,
            display_name=upload.display_name,
            mime_type=upload.mime_type,
            size_bytes=upload.size_bytes,
            store_ref=store_ref,
            status=status,
            created_at=now,
            expires_at=expires_at if expires_at is not None else now + self._config.retention_period_ms,
        )
        return await self._meta_store.do_create_staged(row)

    async def mark_ingested(self, upload_id: str, document_ref: str, now: int, status: UploadStatus = "ingested") -> StagedUpload:
        return await self._meta_store.do_update_staged(upload_id, status=status, document_ref=document_ref, ingested_at=now, ingest_error=None)

    async def mark_skipped_duplicate(self, upload_id: str, document_ref: str | None) -> StagedUpload:
        return await self._meta_store.do_update_staged(upload_id, status="skipped_duplicate", document_ref=document_ref)

    async def mark_failed(self, upload_id: str, error: Exception) -> StagedUpload:
        self.logging.error("Upload %s failed: %s", upload_id, error)
        return await self._meta_store.do_update_staged(upload_id, status="failed", ingest_error=str(error)[:2000])
