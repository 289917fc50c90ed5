import asyncio
import logging

import pytest

from shared.clients.llm.models.StructuredResult import StructuredResult
from shared.clients.rag.models.ChunkPoint import IndexedDocument, SearchHit
from shared.exceptions.errors import ChunkStoreError
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.config import KnowledgeConfig
from shared.stores.blob.local.BlobStoreLocal import BlobStoreLocal
from shared.stores.meta.sql.MetaStoreSql import MetaStoreSql
from services.knowledge_base.KnowledgeService import KnowledgeService


class _StubEmbedClient:
    """Deterministic vectors: [len(text), 1.0, 0.0, ...] padded to the configured size."""

    def __init__(self, dimensions: int = 4):
        self.dimensions = dimensions
        self.calls: list[list[str]] = []
        self.fail_with: Exception | None = None

    async def do_embed(self, texts):
        texts = [texts] if isinstance(texts, str) else list(texts)
        self.calls.append(texts)
        if self.fail_with is not None:
            raise self.fail_with
        return [[float(len(text)), 1.0] + [0.0] * (self.dimensions - 2) for text in texts]


class _StubLLMClient:
    """Returns queued structured results; fails like an unreachable provider once the queue is empty."""

    def __init__(self, results: list | None = None):
        self.results = list(results or [])
        self.prompts: list[str] = []

    async def do_generate_structured(self, prompt, schema, timeout_seconds=0):
        self.prompts.append(prompt)
        if not self.results:
            return StructuredResult[schema].failure("provider unavailable")
        value = self.results.pop(0)
        if isinstance(value, dict):
            return StructuredResult[schema].success(schema.model_validate(value))
        return StructuredResult[schema].failure(str(value))


class _StubRAGClient:
    """In-memory chunk store with the owner-scoped operations of the real client."""

    def __init__(self):
        self.points: list[dict] = []
        self.replace_calls = 0
        self.search_calls = 0
        self.fail_replace = False
        self.replace_delay = 0.0

    async def do_replace_document(self, owner_id, document_ref, display_name, chunks, vectors, batch_size=20):
        self.replace_calls += 1
        version = f"v{self.replace_calls}"
        if self.replace_delay:
            await asyncio.sleep(self.replace_delay)
        if self.fail_replace:
            raise ChunkStoreError("upsert rejected")
        new_points = [
            {
                "owner_id": owner_id,
                "document_ref": document_ref,
                "display_name": display_name,
                "chunk_index": index,
                "chunk_text": chunk,
                "vector": vector,
                "version": version,
            }
            for index, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]
        self.points = [
            p for p in self.points
            if not (p["owner_id"] == owner_id and p["document_ref"] == document_ref)
        ] + new_points
        return version

    async def do_delete_document(self, owner_id, document_ref):
        self.points = [
            p for p in self.points
            if not (p["owner_id"] == owner_id and p["document_ref"] == document_ref)
        ]

    async def do_delete_document_version(self, owner_id, document_ref, version):
        self.points = [
            p for p in self.points
            if not (p["owner_id"] == owner_id and p["document_ref"] == document_ref and p["version"] == version)
        ]

    async def do_vector_search(self, owner_id, vector, limit):
        self.search_calls += 1
        hits = [
            SearchHit(
                document_ref=p["document_ref"],
                display_name=p["display_name"],
                chunk_index=p["chunk_index"],
                chunk_text=p["chunk_text"],
                score=1.0,
            )
            for p in self.points if p["owner_id"] == owner_id
        ]
        return hits[:limit]

    async def do_list_documents(self, owner_id):
        documents = {}
        for p in self.points:
            if p["owner_id"] == owner_id and p["document_ref"] not in documents:
                documents[p["document_ref"]] = IndexedDocument(ref=p["document_ref"], display_name=p["display_name"])
        return sorted(documents.values(), key=lambda doc: (doc.display_name.lower(), doc.ref))

    async def do_count_document_chunks(self, owner_id, document_ref):
        return len([p for p in self.points if p["owner_id"] == owner_id and p["document_ref"] == document_ref])

    def chunks_of(self, owner_id, document_ref):
        return [
            p["chunk_text"]
            for p in sorted(self.points, key=lambda p: p["chunk_index"])
            if p["owner_id"] == owner_id and p["document_ref"] == document_ref
        ]


@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("knowledge_base.tests")))


@pytest.fixture
def kb_config() -> KnowledgeConfig:
    return KnowledgeConfig(
        chunk_size=100,
        chunk_overlap=20,
        max_indexed_chunks=50,
        embedding_batch_size=2,
        upsert_batch_size=5,
        embedding_dimensions=4,
        retention_period_ms=10_000,
        search_limit_default=5,
        search_limit_max=20,
        provider_timeout_seconds=5,
    )


@pytest.fixture
def embed_client(kb_config) -> _StubEmbedClient:
    return _StubEmbedClient(kb_config.embedding_dimensions)


@pytest.fixture
def llm_client() -> _StubLLMClient:
    return _StubLLMClient()


@pytest.fixture
def rag_client() -> _StubRAGClient:
    return _StubRAGClient()


@pytest.fixture
def meta_store(helper_config, tmp_path) -> MetaStoreSql:
    return MetaStoreSql(helper_config, url=f"sqlite+aiosqlite:///{tmp_path / 'meta.db'}")


@pytest.fixture
def run_with_store(meta_store):
    """Run a coroutine factory inside one event loop with the metadata store booted.

    The database file outlives each call, so a test can run several steps.
    """

    def _run(make_coroutine):
        async def _scenario():
            await meta_store.boot()
            try:
                return await make_coroutine()
            finally:
                await meta_store.close()

        return asyncio.run(_scenario())

    return _run


@pytest.fixture
def blob_store(helper_config, tmp_path) -> BlobStoreLocal:
    store = BlobStoreLocal(helper_config, root=tmp_path / "blobs")
    asyncio.run(store.boot())
    return store


@pytest.fixture
def knowledge_service(helper_config, kb_config, embed_client, llm_client, rag_client, meta_store, blob_store) -> KnowledgeService:
    return KnowledgeService.from_components(
        helper_config=helper_config,
        config=kb_config,
        embed_client=embed_client,
        llm_client=llm_client,
        rag_client=rag_client,
        meta_store=meta_store,
        blob_store=blob_store,
    )
