import asyncio

import pytest

from shared.exceptions.errors import (
    ChunkStoreError,
    DocumentNotFoundError,
    InvalidInputError,
    TooManyChunksError,
    UnsupportedFormatError,
)
from shared.extract.TextExtractor import TextExtractor
from services.knowledge_base.DigestService import DigestService
from services.knowledge_base.EmbeddingBatcher import EmbeddingBatcher
from services.knowledge_base.IngestService import IngestService
from services.knowledge_base.models import UploadFile
from services.knowledge_base.text import build_document_ref


def _letters(length: int, offset: int = 0) -> str:
    return "".join(chr(97 + (i + offset) % 26) for i in range(length))


async def _upload(knowledge_service, blob_store, owner_id: str, display_name: str, text: str, mime_type: str = "text/plain"):
    blob_ref = await blob_store.do_put(owner_id, text.encode(), display_name)
    upload = UploadFile(blob_ref=blob_ref, display_name=display_name, mime_type=mime_type, size_bytes=len(text))
    return await knowledge_service.upload_documents(owner_id, [upload])


def test_notes_txt_is_chunked_indexed_and_digested(knowledge_service, blob_store, rag_client, meta_store, run_with_store) -> None:
    text = _letters(150)

    async def scenario():
        result = await _upload(knowledge_service, blob_store, "m1", "notes.txt", text)
        return (
            result,
            await knowledge_service.list_documents("m1"),
            await meta_store.do_list_digests("m1"),
            await meta_store.do_list_staged("m1"),
        )

    result, documents, digests, staged = run_with_store(scenario)

    assert result.store_ref == "kb-m1"
    outcome = result.documents[0]
    assert outcome.status == "ingested"
    assert outcome.chunk_count == 2
    assert rag_client.chunks_of("m1", outcome.document_ref) == [text[0:100], text[80:150]]
    assert [document.display_name for document in documents] == ["notes.txt"]
    assert digests[0].status == "active"
    assert digests[0].document_ref == outcome.document_ref
    assert staged[0].status == "ingested"
    assert staged[0].document_ref == outcome.document_ref
    assert staged[0].expires_at == staged[0].created_at + 10_000


def test_same_name_is_ingested_once(knowledge_service, blob_store, rag_client, meta_store, run_with_store) -> None:
    async def scenario():
        first = await _upload(knowledge_service, blob_store, "m1", "notes.txt", _letters(150))
        second = await _upload(knowledge_service, blob_store, "m1", "  Notes.TXT ", _letters(150, offset=3))
        return first, second, await meta_store.do_list_digests("m1"), await meta_store.do_list_staged("m1")

    first, second, digests, staged = run_with_store(scenario)

    assert second.documents[0].status == "skipped_duplicate"
    assert second.documents[0].document_ref == first.documents[0].document_ref
    assert rag_client.replace_calls == 1
    assert len(digests) == 1
    assert [row.status for row in staged] == ["ingested", "skipped_duplicate"]


def test_concurrent_uploads_of_one_name_keep_a_single_document(knowledge_service, blob_store, rag_client, meta_store, run_with_store) -> None:
    async def scenario():
        results = await asyncio.gather(
            _upload(knowledge_service, blob_store, "m1", "race.txt", _letters(150)),
            _upload(knowledge_service, blob_store, "m1", "race.txt", _letters(150, offset=7)),
        )
        return results, await meta_store.do_list_digests("m1"), await rag_client.do_list_documents("m1")

    results, digests, documents = run_with_store(scenario)

    assert sorted(result.documents[0].status for result in results) == ["ingested", "skipped_duplicate"]
    assert len(digests) == 1
    assert [document.ref for document in documents] == [digests[0].document_ref]


def test_empty_file_list_is_rejected(knowledge_service, run_with_store) -> None:
    with pytest.raises(InvalidInputError):
        run_with_store(lambda: knowledge_service.upload_documents("m1", []))


def test_unsupported_file_marks_the_upload_failed(knowledge_service, blob_store, meta_store, run_with_store) -> None:
    with pytest.raises(UnsupportedFormatError):
        run_with_store(lambda: _upload(knowledge_service, blob_store, "m1", "photo.png", "not really a png", mime_type="image/png"))

    staged = run_with_store(lambda: meta_store.do_list_staged("m1"))
    assert staged[0].status == "failed"
    assert "Unsupported file type" in staged[0].ingest_error
    assert run_with_store(lambda: meta_store.do_list_digests("m1")) == []


def test_oversized_document_is_rejected_before_embedding(knowledge_service, blob_store, embed_client, run_with_store) -> None:
    with pytest.raises(TooManyChunksError) as excinfo:
        run_with_store(lambda: _upload(knowledge_service, blob_store, "m1", "huge.txt", _letters(100 * 60)))

    assert excinfo.value.max_chunks == 50
    assert embed_client.calls == []


def test_chunk_store_failure_leaves_no_digest(knowledge_service, blob_store, rag_client, meta_store, run_with_store) -> None:
    rag_client.fail_replace = True

    with pytest.raises(ChunkStoreError):
        run_with_store(lambda: _upload(knowledge_service, blob_store, "m1", "notes.txt", _letters(150)))

    assert run_with_store(lambda: meta_store.do_list_digests("m1")) == []
    assert run_with_store(lambda: meta_store.do_list_staged("m1"))[0].status == "failed"


def test_reindex_replaces_the_chunks_of_the_existing_document(
    helper_config, kb_config, embed_client, llm_client, rag_client, meta_store, blob_store, run_with_store,
) -> None:
    ingest_service = IngestService(
        helper_config,
        kb_config,
        TextExtractor(helper_config),
        EmbeddingBatcher(helper_config, embed_client, kb_config),
        rag_client,
        meta_store,
        blob_store,
        DigestService(helper_config, llm_client, kb_config),
    )
    old_text, new_text = _letters(150), "z" * 90

    async def scenario():
        old_blob = await blob_store.do_put("m1", old_text.encode(), "guide.txt")
        new_blob = await blob_store.do_put("m1", new_text.encode(), "guide.txt")
        first = await ingest_service.ingest("m1", "kb-m1", UploadFile(blob_ref=old_blob, display_name="guide.txt"))
        second = await ingest_service.reindex("m1", "kb-m1", UploadFile(blob_ref=new_blob, display_name="guide.txt"))
        return first, second, new_blob, await meta_store.do_list_digests("m1")

    first, second, new_blob, digests = run_with_store(scenario)

    assert second.document_ref == first.document_ref
    assert rag_client.chunks_of("m1", first.document_ref) == [new_text]
    assert len(digests) == 1
    assert digests[0].blob_ref == new_blob


def test_delete_retires_digest_and_purges_staged_blobs(knowledge_service, blob_store, rag_client, meta_store, run_with_store) -> None:
    async def scenario():
        result = await _upload(knowledge_service, blob_store, "m1", "notes.txt", _letters(150))
        staged = await meta_store.do_list_staged("m1")
        remaining = await knowledge_service.delete_document("m1", result.documents[0].document_ref)
        rehydrated = await knowledge_service.rehydrate("m1")
        return (
            staged[0].blob_ref,
            remaining,
            rehydrated,
            await meta_store.do_list_digests("m1", include_deleted=True),
            await meta_store.do_list_staged("m1"),
        )

    blob_ref, remaining, rehydrated, digests, staged = run_with_store(scenario)

    assert remaining == []
    assert rag_client.points == []
    assert digests[0].status == "deleted"
    assert digests[0].deleted_at is not None
    assert staged[0].status == "purged"
    assert asyncio.run(blob_store.do_exists(blob_ref)) is False
    assert rehydrated.rehydrated_count == 0


def test_name_can_be_uploaded_again_after_delete(knowledge_service, blob_store, run_with_store) -> None:
    async def scenario():
        first = await _upload(knowledge_service, blob_store, "m1", "notes.txt", _letters(150))
        await knowledge_service.delete_document("m1", first.documents[0].document_ref)
        return await _upload(knowledge_service, blob_store, "m1", "notes.txt", _letters(120))

    again = run_with_store(scenario)

    assert again.documents[0].status == "ingested"


def test_deleting_an_unknown_document_raises(knowledge_service, run_with_store) -> None:
    with pytest.raises(DocumentNotFoundError):
        run_with_store(lambda: knowledge_service.delete_document("m1", "kb-m1/documents/missing-000"))


def test_documents_are_scoped_per_owner(knowledge_service, blob_store, run_with_store) -> None:
    async def scenario():
        await _upload(knowledge_service, blob_store, "m1", "notes.txt", _letters(150))
        return await knowledge_service.list_documents("m2")

    assert run_with_store(scenario) == []


def test_document_refs_are_unique_per_ingestion() -> None:
    first = build_document_ref("kb-m1", "quarterly-report.txt")
    second = build_document_ref("kb-m1", "quarterly-report.txt")

    assert first.startswith("kb-m1/documents/quarterly-report-txt-")
    assert first != second

    prefix = "annual-financial-statements-and-notes-" * 3
    assert build_document_ref("kb-m1", prefix + "2023.pdf") != build_document_ref("kb-m1", prefix + "2024.pdf")


def test_losing_the_race_keeps_the_winners_chunks(knowledge_service, blob_store, rag_client, meta_store, run_with_store) -> None:
    rag_client.replace_delay = 0.05

    async def scenario():
        results = await asyncio.gather(
            _upload(knowledge_service, blob_store, "m1", "quarterly-report.txt", _letters(150)),
            _upload(knowledge_service, blob_store, "m1", "quarterly-report.txt", _letters(150, offset=5)),
        )
        return results, await meta_store.do_list_digests("m1"), await knowledge_service.list_documents("m1")

    results, digests, documents = run_with_store(scenario)

    outcomes = {result.documents[0].status: result.documents[0] for result in results}
    assert set(outcomes) == {"ingested", "skipped_duplicate"}
    winner_ref = outcomes["ingested"].document_ref
    assert [digest.document_ref for digest in digests] == [winner_ref]
    assert [document.ref for document in documents] == [winner_ref]
    assert len(rag_client.chunks_of("m1", winner_ref)) == 2
    assert outcomes["skipped_duplicate"].document_ref == winner_ref
