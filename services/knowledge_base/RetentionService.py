"""Retention lifecycle of staged blobs: purge after expiry, rehydrate from surviving blobs."""

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.exceptions.errors import KnowledgeBaseError
from shared.helper.HelperAsync import now_ms
from shared.helper.HelperConfig import HelperConfig
from shared.stores.blob.BlobStoreInterface import BlobStoreInterface
from shared.stores.meta.MetaStoreInterface import MetaStoreInterface
from shared.stores.meta.models.StagedUpload import StagedUpload
from services.knowledge_base.IngestService import IngestService
from services.knowledge_base.StagedUploadLedger import StagedUploadLedger
from services.knowledge_base.models import PurgeResult, RehydrateMode, RehydrateResult, UploadFile
from services.knowledge_base.text import normalize_name


def latest_per_blob_and_name(rows: list[StagedUpload]) -> list[StagedUpload]:
    """Keep the newest row per (blob_ref, normalized name), oldest first."""
    latest: dict[tuple[str, str], StagedUpload] = {}
    for row in rows:
        key = (row.blob_ref, normalize_name(row.display_name))
        current = latest.get(key)
        if current is None or row.created_at >= current.created_at:
            latest[key] = row
    return sorted(latest.values(), key=lambda row: (row.created_at, row.id))


class RetentionService:
    def __init__(
        self,
        helper_config: HelperConfig,
        meta_store: MetaStoreInterface,
        blob_store: BlobStoreInterface,
        rag_client: RAGClientInterface,
        ingest_service: IngestService,
        ledger: StagedUploadLedger,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._meta_store = meta_store
        self._blob_store = blob_store
        self._rag_client = rag_client
        self._ingest_service = ingest_service
        self._ledger = ledger

    ##########################################
    ################# PURGE ##################
    ##########################################

    async def purge_expired(self, owner_id: str | None = None, now: int | None = None) -> PurgeResult:
        """Delete blobs of expired rows and mark the rows purged.

        Blob deletion is best-effort; a failure is logged and the row still
        transitions. Running it twice with the same now purges nothing the
        second time.

        Args:
            owner_id (str | None): Limit to one owner; None purges all owners.
            now (int | None): Epoch ms cut-off, defaults to the current time.

        Returns:
            PurgeResult: Number of rows that transitioned to purged.
        """
        now = now_ms() if now is None else now
        expired = await self._meta_store.do_list_expired(now, owner_id=owner_id)
        if not expired:
            return PurgeResult(purged_count=0)

        for blob_ref in dict.fromkeys(row.blob_ref for row in expired):
            await self.delete_blob_quietly(blob_ref)

        purged = await self._meta_store.do_mark_purged([row.id for row in expired], now)
        self.logging.info("Purged %d expired staged upload(s).", purged, color="yellow")
        return PurgeResult(purged_count=purged)

    async def delete_blob_quietly(self, blob_ref: str) -> None:
        try:
            await self._blob_store.do_delete(blob_ref)
        except (OSError, KnowledgeBaseError) as exc:
            self.logging.warning("Could not delete blob %s: %s", blob_ref, exc)

    ##########################################
    ############### REHYDRATE ################
    ##########################################

    async def rehydrate(
        self,
        owner_id: str,
        store_ref: str,
        mode: RehydrateMode = "missing-only",
        persona_hint: str | None = None,
    ) -> RehydrateResult:
        """Re-index documents from blobs that have not been purged yet.

        Args:
            owner_id (str): Knowledge store namespace.
            store_ref (str): The owner's store reference.
            mode (RehydrateMode): "missing-only" skips names that already have
                chunks; "all" reindexes every candidate.
            persona_hint (str | None): Passed on to digest generation.

        Returns:
            RehydrateResult: Counts of reindexed and skipped candidates.

        Raises:
            KnowledgeBaseError: The first reindex failure, after its row is marked failed.
        """
        candidates = latest_per_blob_and_name(await self._meta_store.do_list_rehydratable(owner_id))
        present: set[str] = set()
        if mode == "missing-only":
            present = {normalize_name(doc.display_name) for doc in await self._rag_client.do_list_documents(owner_id)}

        result = RehydrateResult()
        for row in candidates:
            name = normalize_name(row.display_name)
            if mode == "missing-only" and name in present:
                result.skipped_count += 1
                continue

            upload = UploadFile(blob_ref=row.blob_ref, display_name=row.display_name, mime_type=row.mime_type, size_bytes=row.size_bytes)
            now = now_ms()
            # the new row keeps the source expiry: rehydration never extends retention
            staged = await self._ledger.stage(owner_id, store_ref, upload, now, expires_at=row.expires_at)
            try:
                ingested = await self._ingest_service.reindex(owner_id, store_ref, upload, persona_hint=persona_hint)
            except KnowledgeBaseError as exc:
                await self._ledger.mark_failed(staged.id, exc)
                raise
            await self._ledger.mark_ingested(staged.id, ingested.document_ref, now_ms(), status="rehydrated")
            present.add(name)
            result.rehydrated_count += 1

        self.logging.info(
            "Rehydrate (%s) for %s: %d reindexed, %d skipped.",
            mode, owner_id, result.rehydrated_count, result.skipped_count,
        )
        return result
