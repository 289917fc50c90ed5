import asyncio
import json

import httpx
import pytest

from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant
from shared.exceptions.errors import ChunkStoreError, ProviderTimeoutError
from shared.helper.HelperAsync import with_timeout


class _RecordingQdrant:
    """MockTransport handler that records requests and answers like Qdrant."""

    def __init__(self, fail_upsert_after: int | None = None, scroll_pages: list[dict] | None = None, fail_flip: bool = False):
        self.requests: list[tuple[str, str, dict, dict]] = []
        self.fail_upsert_after = fail_upsert_after
        self.fail_flip = fail_flip
        self.scroll_pages = list(scroll_pages or [])
        self.collection_exists = True

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, request.url.path, dict(request.url.params), body))
        path = request.url.path
        if path.endswith("/exists"):
            return httpx.Response(200, json={"result": {"exists": self.collection_exists}})
        if request.method == "PUT" and path.endswith("/points"):
            upserts = len([r for r in self.requests if r[0] == "PUT" and r[1].endswith("/points")])
            if self.fail_upsert_after is not None and upserts > self.fail_upsert_after:
                return httpx.Response(500, json={"status": {"error": "disk full"}})
            return httpx.Response(200, json={"result": {"status": "completed"}})
        if path.endswith("/points/delete") and self.fail_flip and "must_not" in body["filter"]:
            return httpx.Response(500, json={"status": {"error": "timeout"}})
        if path.endswith("/points/scroll"):
            return httpx.Response(200, json={"result": self.scroll_pages.pop(0)})
        if path.endswith("/points/search"):
            return httpx.Response(200, json={"result": [
                {"id": "1", "score": 0.8, "payload": {"document_ref": "d1", "display_name": "a.txt", "chunk_index": 2, "chunk_text": "hit"}},
                {"id": "2", "score": 0.5, "payload": {"document_ref": "d1", "display_name": "a.txt", "chunk_index": 3, "chunk_text": ""}},
            ]})
        if path.endswith("/points/count"):
            return httpx.Response(200, json={"result": {"count": 7}})
        return httpx.Response(200, json={"result": True})

    def of(self, method: str, suffix: str) -> list[tuple[str, str, dict, dict]]:
        return [r for r in self.requests if r[0] == method and r[1].endswith(suffix)]


@pytest.fixture
def qdrant_env(monkeypatch) -> None:
    monkeypatch.setenv("RAG_QDRANT_BASE_URL", "http://qdrant:6333")
    monkeypatch.setenv("RAG_QDRANT_COLLECTION", "chunks")


def _client(helper_config, handler: _RecordingQdrant) -> RAGClientQdrant:
    client = RAGClientQdrant(helper_config)
    asyncio.run(client.boot(transport=httpx.MockTransport(handler)))
    return client


def test_replace_writes_new_version_before_removing_the_old(helper_config, qdrant_env) -> None:
    handler = _RecordingQdrant()
    client = _client(helper_config, handler)

    version = asyncio.run(client.do_replace_document("m1", "doc-1", "a.txt", ["x", "y", "z"], [[0.1]] * 3, batch_size=2))

    upserts = handler.of("PUT", "/points")
    assert [len(r[3]["points"]) for r in upserts] == [2, 1]
    assert all(r[2] == {"wait": "true"} for r in upserts)
    payloads = [point["payload"] for r in upserts for point in r[3]["points"]]
    assert [payload["chunk_index"] for payload in payloads] == [0, 1, 2]
    assert {payload["version"] for payload in payloads} == {version}
    assert {payload["owner_id"] for payload in payloads} == {"m1"}

    (delete,) = handler.of("POST", "/points/delete")
    assert handler.requests.index(delete) > handler.requests.index(upserts[-1])
    assert delete[3]["filter"] == {
        "must": [
            {"key": "owner_id", "match": {"value": "m1"}},
            {"key": "document_ref", "match": {"value": "doc-1"}},
        ],
        "must_not": [{"key": "version", "match": {"value": version}}],
    }


def test_failed_upsert_discards_the_partial_version(helper_config, qdrant_env) -> None:
    handler = _RecordingQdrant(fail_upsert_after=1)
    client = _client(helper_config, handler)

    with pytest.raises(ChunkStoreError):
        asyncio.run(client.do_replace_document("m1", "doc-1", "a.txt", ["x", "y", "z"], [[0.1]] * 3, batch_size=2))

    (delete,) = handler.of("POST", "/points/delete")
    must = delete[3]["filter"]["must"]
    assert {"key": "document_ref", "match": {"value": "doc-1"}} in must
    assert any(condition["key"] == "version" for condition in must)
    assert "must_not" not in delete[3]["filter"]


def test_list_documents_follows_pages_and_deduplicates(helper_config, qdrant_env) -> None:
    handler = _RecordingQdrant(scroll_pages=[
        {"points": [
            {"payload": {"document_ref": "d2", "display_name": "b.txt"}},
            {"payload": {"document_ref": "d1", "display_name": "A.txt"}},
        ], "next_page_offset": "p2"},
        {"points": [{"payload": {"document_ref": "d2", "display_name": "b.txt"}}], "next_page_offset": None},
    ])
    client = _client(helper_config, handler)

    documents = asyncio.run(client.do_list_documents("m1"))

    assert [(document.ref, document.display_name) for document in documents] == [("d1", "A.txt"), ("d2", "b.txt")]
    scrolls = handler.of("POST", "/points/scroll")
    assert "offset" not in scrolls[0][3]
    assert scrolls[1][3]["offset"] == "p2"


def test_vector_search_is_owner_scoped_and_skips_empty_hits(helper_config, qdrant_env) -> None:
    handler = _RecordingQdrant()
    client = _client(helper_config, handler)

    hits = asyncio.run(client.do_vector_search("m1", [0.1, 0.2], limit=3))

    assert [(hit.document_ref, hit.chunk_index, hit.chunk_text) for hit in hits] == [("d1", 2, "hit")]
    (search,) = handler.of("POST", "/points/search")
    assert search[1] == "/collections/chunks/points/search"
    assert search[3]["filter"] == {"must": [{"key": "owner_id", "match": {"value": "m1"}}]}
    assert search[3]["limit"] == 3


def test_blank_owner_is_refused(helper_config, qdrant_env) -> None:
    client = _client(helper_config, _RecordingQdrant())

    with pytest.raises(ValueError):
        asyncio.run(client.do_vector_search("  ", [0.1], limit=3))


def test_ensure_collection_creates_collection_and_payload_indexes(helper_config, qdrant_env) -> None:
    handler = _RecordingQdrant()
    handler.collection_exists = False
    client = _client(helper_config, handler)

    created = asyncio.run(client.do_ensure_collection(768))

    assert created is True
    (collection,) = [r for r in handler.requests if r[0] == "PUT" and r[1] == "/collections/chunks"]
    assert collection[3] == {"vectors": {"size": 768, "distance": "Cosine"}}
    assert [r[3]["field_name"] for r in handler.of("PUT", "/index")] == ["owner_id", "document_ref"]


def test_count_document_chunks(helper_config, qdrant_env) -> None:
    client = _client(helper_config, _RecordingQdrant())

    assert asyncio.run(client.do_count_document_chunks("m1", "doc-1")) == 7


def test_missing_base_url_fails_at_construction(helper_config, monkeypatch) -> None:
    monkeypatch.delenv("RAG_QDRANT_BASE_URL", raising=False)

    with pytest.raises(ValueError, match="RAG_QDRANT_BASE_URL"):
        RAGClientQdrant(helper_config)


def test_failed_flip_removes_the_new_version(helper_config, qdrant_env) -> None:
    handler = _RecordingQdrant(fail_flip=True)
    client = _client(helper_config, handler)

    with pytest.raises(ChunkStoreError):
        asyncio.run(client.do_replace_document("m1", "doc-1", "a.txt", ["x", "y"], [[0.1]] * 2, batch_size=2))

    flip, discard = handler.of("POST", "/points/delete")
    assert "must_not" in flip[3]["filter"]
    assert "must_not" not in discard[3]["filter"]
    assert any(condition["key"] == "version" for condition in discard[3]["filter"]["must"])


def test_timed_out_replace_discards_the_partial_version(helper_config, qdrant_env) -> None:
    requests: list[tuple[str, str, dict]] = []

    async def slow_second_upsert(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path, json.loads(request.content)))
        if request.method == "PUT" and len([r for r in requests if r[0] == "PUT"]) == 2:
            await asyncio.sleep(1)
        return httpx.Response(200, json={"result": {"status": "completed"}})

    async def scenario() -> None:
        client = RAGClientQdrant(helper_config)
        await client.boot(transport=httpx.MockTransport(slow_second_upsert))
        try:
            with pytest.raises(ProviderTimeoutError):
                await with_timeout(
                    client.do_replace_document("m1", "doc-1", "a.txt", ["x", "y", "z"], [[0.1]] * 3, batch_size=2),
                    0.2,
                    "replace_document",
                )
        finally:
            await client.close()

    asyncio.run(scenario())

    upserts = [r for r in requests if r[0] == "PUT"]
    (discard,) = [r for r in requests if r[1].endswith("/points/delete")]
    version = upserts[0][2]["points"][0]["payload"]["version"]
    assert {"key": "version", "match": {"value": version}} in discard[2]["filter"]["must"]
    assert "must_not" not in discard[2]["filter"]


def test_delete_document_version_only_targets_that_version(helper_config, qdrant_env) -> None:
    handler = _RecordingQdrant()
    client = _client(helper_config, handler)

    asyncio.run(client.do_delete_document_version("m1", "doc-1", "abc"))

    (delete,) = handler.of("POST", "/points/delete")
    assert delete[3]["filter"] == {"must": [
        {"key": "owner_id", "match": {"value": "m1"}},
        {"key": "document_ref", "match": {"value": "doc-1"}},
        {"key": "version", "match": {"value": "abc"}},
    ]}
