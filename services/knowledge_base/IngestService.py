"""Ingestion pipeline: dedup, extract, chunk, embed, index, digest."""

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.exceptions.errors import (
    ChunkStoreError,
    DuplicateDocumentError,
    EmptyDocumentError,
    ExtractionFailed,
    ProviderError,
    ProviderTimeoutError,
    TooManyChunksError,
)
from shared.extract.TextExtractor import TextExtractor
from shared.helper.HelperAsync import now_ms, with_timeout
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig
from shared.stores.blob.BlobStoreInterface import BlobStoreInterface
from shared.stores.meta.MetaStoreInterface import MetaStoreInterface
from shared.stores.meta.models.DocumentDigest import DocumentDigest
from services.knowledge_base.DigestService import DigestService
from services.knowledge_base.EmbeddingBatcher import EmbeddingBatcher
from services.knowledge_base.chunking import split_text
from services.knowledge_base.models import IngestResult, UploadFile
from services.knowledge_base.text import build_document_ref, normalize_name


class IngestService:
    """Turns one staged file into indexed chunks plus a digest."""

    def __init__(
        self,
        helper_config: HelperConfig,
        config: KnowledgeConfig,
        extractor: TextExtractor,
        batcher: EmbeddingBatcher,
        rag_client: RAGClientInterface,
        meta_store: MetaStoreInterface,
        blob_store: BlobStoreInterface,
        digest_service: DigestService,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._config = config
        self._extractor = extractor
        self._batcher = batcher
        self._rag_client = rag_client
        self._meta_store = meta_store
        self._blob_store = blob_store
        self._digest_service = digest_service

    ##########################################
    ################ INGEST ##################
    ##########################################

    async def ingest(self, owner_id: str, store_ref: str, upload: UploadFile, persona_hint: str | None = None) -> IngestResult:
        """First-time ingestion of a file.

        Raises:
            DuplicateDocumentError: If an active document already has the same
                normalized name, or another upload of that name won the race.
            ExtractionFailed: If no text can be obtained from the blob.
            TooManyChunksError: If the text exceeds max_indexed_chunks (checked before embedding).
            EmptyDocumentError: If chunking yields nothing.
            EmbeddingProviderError: If embedding fails.
            ChunkStoreError: If the chunk store write fails.
            ProviderTimeoutError: If the chunk store write exceeds the provider timeout.
        """
        normalized = normalize_name(upload.display_name)
        existing = await self._meta_store.do_get_active_digest_by_name(owner_id, normalized)
        if existing is not None:
            self.logging.info("Skipping '%s': already indexed as %s.", upload.display_name, existing.document_ref)
            raise DuplicateDocumentError(upload.display_name, existing.document_ref)

        document_ref = build_document_ref(store_ref, upload.display_name)
        text, chunk_count, version = await self._index(owner_id, document_ref, upload)

        digest = await self._digest_service.build_digest(
            owner_id=owner_id,
            document_ref=document_ref,
            display_name=upload.display_name,
            sample_text=text,
            now=now_ms(),
            blob_ref=upload.blob_ref,
            persona_hint=persona_hint,
        )
        if not await self._meta_store.do_insert_digest_if_absent(digest):
            # a concurrent upload of the same name committed first; drop only what we wrote
            await self._rag_client.do_delete_document_version(owner_id, document_ref, version)
            winner = await self._meta_store.do_get_active_digest_by_name(owner_id, normalized)
            raise DuplicateDocumentError(upload.display_name, winner.document_ref if winner else None)

        self.logging.info("Ingested '%s' as %s (%d chunks).", upload.display_name, document_ref, chunk_count, color="green")
        return IngestResult(document_ref=document_ref, chunk_count=chunk_count)

    async def reindex(self, owner_id: str, store_ref: str, upload: UploadFile, persona_hint: str | None = None) -> IngestResult:
        """Index a file again without the duplicate check.

        When an active document of the same name exists its ref is reused, so
        the chunk store swaps the old chunks for the new ones.
        """
        existing = await self._meta_store.do_get_active_digest_by_name(owner_id, normalize_name(upload.display_name))
        document_ref = existing.document_ref if existing else build_document_ref(store_ref, upload.display_name)
        text, chunk_count, _ = await self._index(owner_id, document_ref, upload)

        digest = await self._digest_service.build_digest(
            owner_id=owner_id,
            document_ref=document_ref,
            display_name=upload.display_name,
            sample_text=text,
            now=now_ms(),
            blob_ref=upload.blob_ref,
            persona_hint=persona_hint,
        )
        await self._meta_store.do_upsert_digest(digest)
        self.logging.info("Reindexed '%s' as %s (%d chunks).", upload.display_name, document_ref, chunk_count)
        return IngestResult(document_ref=document_ref, chunk_count=chunk_count)

    async def rebuild_digest(self, digest: DocumentDigest, upload: UploadFile | None, persona_hint: str | None = None) -> DocumentDigest:
        """Regenerate the digest of an indexed document from its blob sample.

        Without a readable blob the digest is built from the name alone.
        """
        sample: str | None = None
        if upload is not None:
            try:
                sample = await self._extract(upload)
            except (ExtractionFailed, ProviderError) as exc:
                self.logging.warning("No sample for '%s' while rebuilding digest: %s", digest.display_name, exc)

        rebuilt = await self._digest_service.build_digest(
            owner_id=digest.owner_id,
            document_ref=digest.document_ref,
            display_name=digest.display_name,
            sample_text=sample,
            now=now_ms(),
            blob_ref=upload.blob_ref if upload else digest.blob_ref,
            persona_hint=persona_hint,
        )
        await self._meta_store.do_upsert_digest(rebuilt)
        return rebuilt

    ##########################################
    ################ STEPS ###################
    ##########################################

    async def _extract(self, upload: UploadFile) -> str:
        data = await self._blob_store.do_get(upload.blob_ref)
        return await with_timeout(
            self._extractor.extract_text(data, upload.display_name, upload.mime_type),
            self._config.provider_timeout_seconds,
            "extract",
        )

    def prepare_chunks(self, display_name: str, text: str) -> list[str]:
        """Chunk text and enforce the chunk limits.

        Raises:
            TooManyChunksError: If there are more than max_indexed_chunks chunks.
            EmptyDocumentError: If there are none.
        """
        chunks = split_text(text, self._config.chunk_size, self._config.chunk_overlap)
        if len(chunks) > self._config.max_indexed_chunks:
            raise TooManyChunksError(display_name, len(chunks), self._config.max_indexed_chunks)
        if not chunks:
            raise EmptyDocumentError(display_name)
        return chunks

    async def _index(self, owner_id: str, document_ref: str, upload: UploadFile) -> tuple[str, int, str]:
        """Extract, chunk, embed and store; returns the text, chunk count and live version."""
        text = await self._extract(upload)
        chunks = self.prepare_chunks(upload.display_name, text)
        vectors = await self._batcher.embed(chunks)
        try:
            version = await with_timeout(
                self._rag_client.do_replace_document(
                    owner_id=owner_id,
                    document_ref=document_ref,
                    display_name=upload.display_name,
                    chunks=chunks,
                    vectors=vectors,
                    batch_size=self._config.upsert_batch_size,
                ),
                self._config.provider_timeout_seconds,
                "replace_document",
            )
        except (ChunkStoreError, ProviderTimeoutError):
            raise
        except ProviderError as exc:
            raise ChunkStoreError(str(exc)) from exc
        return text, len(chunks), version

