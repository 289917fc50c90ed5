"""Facade over the knowledge base: the operations the API and runners call."""

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.ChunkPoint import IndexedDocument
from shared.exceptions.errors import (
    ChunkStoreError,
    DocumentNotFoundError,
    DuplicateDocumentError,
    InvalidInputError,
    KnowledgeBaseError,
    ProviderError,
    ProviderTimeoutError,
)
from shared.extract.TextExtractor import TextExtractor
from shared.helper.HelperAsync import now_ms, with_timeout
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig
from shared.stores.blob.BlobStoreInterface import BlobStoreInterface
from shared.stores.meta.MetaStoreInterface import MetaStoreInterface
from shared.stores.meta.models.DocumentDigest import DocumentDigest
from shared.stores.meta.models.StagedUpload import StagedUpload
from services.knowledge_base.DigestService import DigestService
from services.knowledge_base.EmbeddingBatcher import EmbeddingBatcher
from services.knowledge_base.EvidenceRetriever import EMPTY_EVIDENCE_PACK, EvidenceRetriever, build_evidence_pack
from services.knowledge_base.IngestService import IngestService
from services.knowledge_base.QueryRewriter import QueryRewriter
from services.knowledge_base.RetentionService import RetentionService
from services.knowledge_base.RetrievalGate import RetrievalGate
from services.knowledge_base.StagedUploadLedger import StagedUploadLedger
from services.knowledge_base.models import (
    ChatResult,
    ContextMessage,
    EnsureStoreResult,
    Evidence,
    PurgeResult,
    QueryPlan,
    RebuildResult,
    RehydrateMode,
    RehydrateResult,
    UploadDocumentsResult,
    UploadFile,
    UploadOutcome,
)
from services.knowledge_base.text import normalize_name, store_ref_for


class KnowledgeService:
    """Per-owner knowledge base: uploads, documents, retention and chat retrieval.

    Every operation is scoped to one owner_id; nothing here ever reads or
    writes chunks of another owner.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        config: KnowledgeConfig,
        rag_client: RAGClientInterface,
        meta_store: MetaStoreInterface,
        blob_store: BlobStoreInterface,
        ingest_service: IngestService,
        retention_service: RetentionService,
        ledger: StagedUploadLedger,
        gate: RetrievalGate,
        rewriter: QueryRewriter,
        retriever: EvidenceRetriever,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._config = config
        self._rag_client = rag_client
        self._meta_store = meta_store
        self._blob_store = blob_store
        self._ingest_service = ingest_service
        self._retention_service = retention_service
        self._ledger = ledger
        self._gate = gate
        self._rewriter = rewriter
        self._retriever = retriever

    @classmethod
    def from_components(
        cls,
        helper_config: HelperConfig,
        config: KnowledgeConfig,
        embed_client: EmbedClientInterface,
        llm_client: LLMClientInterface,
        rag_client: RAGClientInterface,
        meta_store: MetaStoreInterface,
        blob_store: BlobStoreInterface,
    ) -> "KnowledgeService":
        """Wire the services of the knowledge base around booted clients and stores."""
        batcher = EmbeddingBatcher(helper_config, embed_client, config)
        ledger = StagedUploadLedger(helper_config, meta_store, config)
        ingest_service = IngestService(
            helper_config,
            config,
            TextExtractor(helper_config),
            batcher,
            rag_client,
            meta_store,
            blob_store,
            DigestService(helper_config, llm_client, config),
        )
        retention_service = RetentionService(helper_config, meta_store, blob_store, rag_client, ingest_service, ledger)
        return cls(
            helper_config=helper_config,
            config=config,
            rag_client=rag_client,
            meta_store=meta_store,
            blob_store=blob_store,
            ingest_service=ingest_service,
            retention_service=retention_service,
            ledger=ledger,
            gate=RetrievalGate(helper_config, llm_client, config),
            rewriter=QueryRewriter(helper_config, llm_client, config),
            retriever=EvidenceRetriever(helper_config, config, batcher, rag_client),
        )

    ##########################################
    ################# STORE ##################
    ##########################################

    async def ensure_knowledge_store(self, owner_id: str) -> EnsureStoreResult:
        owner_id = self._require_owner(owner_id)
        store, created = await self._meta_store.do_ensure_store(owner_id, store_ref_for(owner_id), now_ms())
        if created:
            self.logging.info("Created knowledge store %s for owner %s.", store.store_ref, owner_id, color="green")
        return EnsureStoreResult(store_ref=store.store_ref, created=created)

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    async def upload_documents(self, owner_id: str, files: list[UploadFile], persona_hint: str | None = None) -> UploadDocumentsResult:
        """Stage and ingest files one after the other.

        A duplicate name is not an error: its row is marked skipped_duplicate
        and processing continues. Any other failure marks the row failed and
        is raised, leaving the remaining files unprocessed.

        Args:
            owner_id (str): Knowledge store namespace.
            files (list[UploadFile]): Files already written to the blob store.
            persona_hint (str | None): Passed on to digest generation.

        Returns:
            UploadDocumentsResult: The store ref and one outcome per processed file.

        Raises:
            InvalidInputError: If files is empty.
            KnowledgeBaseError: The first ingestion failure.
        """
        owner_id = self._require_owner(owner_id)
        if not files:
            raise InvalidInputError("At least one file is required")
        store = await self.ensure_knowledge_store(owner_id)

        outcomes: list[UploadOutcome] = []
        for upload in files:
            staged = await self._ledger.stage(owner_id, store.store_ref, upload, now_ms())
            try:
                ingested = await self._ingest_service.ingest(owner_id, store.store_ref, upload, persona_hint=persona_hint)
            except DuplicateDocumentError as exc:
                await self._ledger.mark_skipped_duplicate(staged.id, exc.document_ref)
                outcomes.append(UploadOutcome(
                    upload_id=staged.id,
                    display_name=upload.display_name,
                    status="skipped_duplicate",
                    document_ref=exc.document_ref,
                ))
                continue
            except KnowledgeBaseError as exc:
                await self._ledger.mark_failed(staged.id, exc)
                raise

            await self._ledger.mark_ingested(staged.id, ingested.document_ref, now_ms())
            outcomes.append(UploadOutcome(
                upload_id=staged.id,
                display_name=upload.display_name,
                status="ingested",
                document_ref=ingested.document_ref,
                chunk_count=ingested.chunk_count,
            ))

        return UploadDocumentsResult(store_ref=store.store_ref, documents=outcomes)

    async def list_documents(self, owner_id: str) -> list[IndexedDocument]:
        """Documents with chunks in the store, sorted by display name."""
        owner_id = self._require_owner(owner_id)
        try:
            return await with_timeout(
                self._rag_client.do_list_documents(owner_id),
                self._config.provider_timeout_seconds,
                "list_documents",
            )
        except (ChunkStoreError, ProviderTimeoutError):
            raise
        except ProviderError as exc:
            raise ChunkStoreError(str(exc)) from exc

    async def delete_document(self, owner_id: str, document_ref: str) -> list[IndexedDocument]:
        """Remove a document's chunks, retire its digest and purge its staged blobs.

        Raises:
            DocumentNotFoundError: If the owner has neither a digest nor chunks for the ref.
        """
        owner_id = self._require_owner(owner_id)
        digest = await self._meta_store.do_get_digest(owner_id, document_ref)
        if digest is None or digest.status != "active":
            if await self._rag_client.do_count_document_chunks(owner_id, document_ref) == 0:
                raise DocumentNotFoundError(document_ref)

        await self._rag_client.do_delete_document(owner_id, document_ref)
        now = now_ms()
        await self._meta_store.do_mark_digest_deleted(owner_id, document_ref, now)

        # purge the blobs too, otherwise rehydrate would bring the document back
        staged = [row for row in await self._meta_store.do_list_staged_by_document(owner_id, document_ref) if row.status != "purged"]
        for blob_ref in dict.fromkeys(row.blob_ref for row in staged):
            await self._retention_service.delete_blob_quietly(blob_ref)
        if staged:
            await self._meta_store.do_mark_purged([row.id for row in staged], now)

        self.logging.info("Deleted document %s of owner %s.", document_ref, owner_id, color="yellow")
        return await self.list_documents(owner_id)

    ##########################################
    ############### RETENTION ################
    ##########################################

    async def rehydrate(self, owner_id: str, mode: RehydrateMode = "missing-only", persona_hint: str | None = None) -> RehydrateResult:
        owner_id = self._require_owner(owner_id)
        store = await self.ensure_knowledge_store(owner_id)
        result = await self._retention_service.rehydrate(owner_id, store.store_ref, mode=mode, persona_hint=persona_hint)
        result.documents = await self.list_documents(owner_id)
        return result

    async def purge_expired(self, owner_id: str | None = None, now: int | None = None) -> PurgeResult:
        return await self._retention_service.purge_expired(owner_id=owner_id, now=now)

    async def rebuild_digests(self, owner_id: str, persona_hint: str | None = None) -> RebuildResult:
        """Regenerate the digest of every indexed document.

        The newest staged upload with the same normalized name provides the
        blob to sample from; documents without a name are skipped.
        """
        owner_id = self._require_owner(owner_id)
        documents = await self.list_documents(owner_id)
        latest = self._latest_upload_per_name(await self._meta_store.do_list_staged(owner_id))

        result = RebuildResult()
        for document in documents:
            name = normalize_name(document.display_name)
            if not name:
                result.skipped_count += 1
                continue

            digest = await self._meta_store.do_get_digest(owner_id, document.ref)
            if digest is None:
                digest = DocumentDigest(
                    owner_id=owner_id,
                    document_ref=document.ref,
                    display_name=document.display_name,
                    normalized_name=name,
                )
            staged = latest.get(name)
            upload = None
            if staged is not None:
                upload = UploadFile(
                    blob_ref=staged.blob_ref,
                    display_name=staged.display_name,
                    mime_type=staged.mime_type,
                    size_bytes=staged.size_bytes,
                )
            await self._ingest_service.rebuild_digest(digest, upload, persona_hint=persona_hint)
            result.rebuilt_count += 1

        self.logging.info("Rebuilt %d digest(s) for %s, skipped %d.", result.rebuilt_count, owner_id, result.skipped_count)
        return result

    @staticmethod
    def _latest_upload_per_name(rows: list[StagedUpload]) -> dict[str, StagedUpload]:
        latest: dict[str, StagedUpload] = {}
        for row in rows:
            if row.status == "purged":
                continue
            key = normalize_name(row.display_name)
            current = latest.get(key)
            if current is None or row.created_at >= current.created_at:
                latest[key] = row
        return latest

    ##########################################
    ################# CHAT ###################
    ##########################################

    async def chat(
        self,
        owner_id: str,
        query: str,
        context: list[ContextMessage] | None = None,
        digests: list[DocumentDigest] | None = None,
        memory_hint: str | None = None,
        limit: int | None = None,
    ) -> ChatResult:
        """Decide whether this turn needs the knowledge base and collect evidence if so.

        Args:
            owner_id (str): Knowledge store namespace.
            query (str): The user's message.
            context (list[ContextMessage] | None): Prior turns, oldest first.
            digests (list[DocumentDigest] | None): Active digests; loaded from the
                metadata store when omitted.
            memory_hint (str | None): Conversation memory summary for the rewriter.
            limit (int | None): Snippets per retrieval pass.

        Returns:
            ChatResult: Gate decision, query plan and the evidence pack to put
                in front of the answer model.

        Raises:
            EmbeddingProviderError: If the query cannot be embedded.
            ChunkStoreError: If listing or searching chunks fails.
        """
        owner_id = self._require_owner(owner_id)
        context = context or []
        documents = await self.list_documents(owner_id)
        if digests is None:
            digests = await self._meta_store.do_list_digests(owner_id)

        if not documents:
            decision = await self._gate.decide(query, query, context, digests, has_docs=False)
            plan = QueryPlan(
                original_query=query,
                standalone_query=query,
                gate_used=False,
                gate_reason=decision.reason,
            )
            return ChatResult(gate_decision=decision, query_plan=plan, evidence_pack=EMPTY_EVIDENCE_PACK)

        rewrite = await self._rewriter.rewrite(query, context, memory_hint, digests)
        decision = await self._gate.decide(query, rewrite.standalone_query, context, digests, has_docs=True)
        plan = QueryPlan(
            original_query=query,
            standalone_query=rewrite.standalone_query,
            query_alternates=rewrite.alternates,
            gate_used=decision.use_knowledge_base,
            gate_reason=decision.reason,
            matched_digest_signals=decision.matched_digest_signals,
        )
        if not decision.use_knowledge_base:
            self.logging.debug("Gate declined retrieval for %s: %s", owner_id, decision.reason)
            return ChatResult(gate_decision=decision, query_plan=plan, evidence_pack=EMPTY_EVIDENCE_PACK)

        evidence, alternate = await self._retriever.retrieve_two_pass(owner_id, rewrite, limit)
        plan.alternate_query = alternate
        return ChatResult(
            gate_decision=decision,
            query_plan=plan,
            evidence=evidence,
            evidence_pack=build_evidence_pack(evidence),
            grounded=evidence.grounded,
        )

    async def search(self, owner_id: str, query: str, limit: int | None = None) -> Evidence:
        owner_id = self._require_owner(owner_id)
        return await self._retriever.retrieve(owner_id, query, limit)

    @staticmethod
    def _require_owner(owner_id: str) -> str:
        owner_id = (owner_id or "").strip()
        if not owner_id:
            raise InvalidInputError("owner_id must not be empty")
        return owner_id
