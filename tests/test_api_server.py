import pytest
from fastapi.testclient import TestClient

from shared.clients.rag.models.ChunkPoint import IndexedDocument
from shared.exceptions.errors import (
    ChunkStoreError,
    DocumentNotFoundError,
    EmptyExtractionError,
    ProviderTimeoutError,
    TooManyChunksError,
)
from server.api_server import app, status_code_for
from services.knowledge_base.models import ChatResult, GateDecision, QueryPlan

API_KEY = "test-key"


class _StubKnowledgeService:
    def __init__(self):
        self.calls: list[tuple] = []
        self.raise_on_upload: Exception | None = None

    async def upload_documents(self, owner_id, files, persona_hint=None):
        self.calls.append(("upload_documents", owner_id, [file.display_name for file in files], persona_hint))
        raise self.raise_on_upload

    async def list_documents(self, owner_id):
        return [IndexedDocument(ref=f"kb-{owner_id}/documents/notes-1", display_name="notes.txt")]

    async def delete_document(self, owner_id, document_ref):
        self.calls.append(("delete_document", owner_id, document_ref))
        raise DocumentNotFoundError(document_ref)

    async def chat(self, owner_id, query, context, digests, memory_hint, limit):
        self.calls.append(("chat", owner_id, query, len(context)))
        return ChatResult(
            gate_decision=GateDecision(use_knowledge_base=False, reason="no-docs"),
            query_plan=QueryPlan(original_query=query, standalone_query=query, gate_used=False, gate_reason="no-docs"),
            evidence_pack="No grounded snippets found for this turn.",
        )


@pytest.fixture
def knowledge_stub(blob_store) -> _StubKnowledgeService:
    stub = _StubKnowledgeService()
    app.state.api_key = API_KEY
    app.state.knowledge_service = stub
    app.state.blob_store = blob_store
    return stub


@pytest.fixture
def client(knowledge_stub) -> TestClient:
    return TestClient(app)


def test_wrong_api_key_is_rejected(client) -> None:
    response = client.get("/knowledge/m1/documents", headers={"X-Api-Key": "nope"})

    assert response.status_code == 401


def test_list_documents(client) -> None:
    response = client.get("/knowledge/m1/documents", headers={"X-Api-Key": API_KEY})

    assert response.status_code == 200
    assert response.json() == {
        "owner_id": "m1",
        "documents": [{"ref": "kb-m1/documents/notes-1", "display_name": "notes.txt"}],
        "total": 1,
    }


def test_blob_upload_stores_the_raw_body(client, blob_store) -> None:
    response = client.post(
        "/knowledge/m1/blobs",
        params={"display_name": "notes.txt"},
        content=b"hello world",
        headers={"X-Api-Key": API_KEY, "Content-Type": "text/plain"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["size_bytes"] == 11
    assert body["mime_type"] == "text/plain"
    assert body["blob_ref"].startswith("m1/")


def test_empty_blob_upload_is_unprocessable(client) -> None:
    response = client.post("/knowledge/m1/blobs", params={"display_name": "a.txt"}, content=b"", headers={"X-Api-Key": API_KEY})

    assert response.status_code == 422
    assert response.json()["error"] == "InvalidInputError"


def test_oversized_upload_maps_to_413(client, knowledge_stub) -> None:
    knowledge_stub.raise_on_upload = TooManyChunksError("huge.txt", 3000, 2000)

    response = client.post(
        "/knowledge/m1/documents",
        json={"files": [{"blob_ref": "m1/abc", "display_name": "huge.txt"}], "persona_hint": "calm"},
        headers={"X-Api-Key": API_KEY},
    )

    assert response.status_code == 413
    assert "3000 chunks" in response.json()["detail"]
    assert knowledge_stub.calls == [("upload_documents", "m1", ["huge.txt"], "calm")]


def test_delete_keeps_slashes_in_the_document_ref(client, knowledge_stub) -> None:
    response = client.delete("/knowledge/m1/documents/kb-m1/documents/notes-abc", headers={"X-Api-Key": API_KEY})

    assert response.status_code == 404
    assert knowledge_stub.calls == [("delete_document", "m1", "kb-m1/documents/notes-abc")]


def test_chat_route(client, knowledge_stub) -> None:
    response = client.post(
        "/chat",
        json={"owner_id": "m1", "query": "hey", "context": [{"role": "user", "content": "hi"}]},
        headers={"X-Api-Key": API_KEY},
    )

    assert response.status_code == 200
    assert response.json()["gate_decision"]["reason"] == "no-docs"
    assert knowledge_stub.calls == [("chat", "m1", "hey", 1)]


@pytest.mark.parametrize("error, status_code", [
    (EmptyExtractionError("a.txt"), 422),
    (DocumentNotFoundError("ref"), 404),
    (ChunkStoreError("down"), 502),
    (ProviderTimeoutError("embed", 60), 504),
])
def test_error_status_codes(error, status_code) -> None:
    assert status_code_for(error) == status_code
