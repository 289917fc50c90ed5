import asyncio

import fitz
import pytest
from pydantic import ValidationError

from shared.exceptions.errors import BlobNotFoundError, EmptyExtractionError, UnsupportedFormatError
from shared.extract.TextExtractor import TextExtractor, normalize_extracted_text
from shared.models.config import KnowledgeConfig


def test_helper_config_reads_typed_values(helper_config, monkeypatch) -> None:
    monkeypatch.setenv("KB_TEST_STRING", "  padded ")
    monkeypatch.setenv("KB_TEST_FLOAT", "1.5")
    monkeypatch.setenv("KB_TEST_BOOL", "Yes")
    monkeypatch.setenv("KB_TEST_LIST", "[m1, m2,,m3]")

    assert helper_config.get_string_val("kb_test_string") == "padded"
    assert helper_config.get_number_val("KB_TEST_FLOAT") == 1.5
    assert helper_config.get_bool_val("KB_TEST_BOOL") is True
    assert helper_config.get_list_val("KB_TEST_LIST") == ["m1", "m2", "m3"]
    assert helper_config.get_int_val("KB_TEST_UNSET", default=7) == 7


def test_empty_value_counts_as_unset(helper_config, monkeypatch) -> None:
    monkeypatch.setenv("KB_TEST_EMPTY", "")

    with pytest.raises(ValueError, match="is not set"):
        helper_config.get_string_val("KB_TEST_EMPTY")


@pytest.mark.parametrize("raw, message", [
    ("abc", "not a valid number"),
    ("2.5", "must be an integer"),
    ("0", "must be >= 1"),
])
def test_int_values_are_validated(helper_config, monkeypatch, raw, message) -> None:
    monkeypatch.setenv("KB_TEST_INT", raw)

    with pytest.raises(ValueError, match=message):
        helper_config.get_int_val("KB_TEST_INT", default=5, minimum=1)


def test_list_values_need_brackets(helper_config, monkeypatch) -> None:
    monkeypatch.setenv("KB_TEST_LIST", "m1,m2")

    with pytest.raises(ValueError, match="format"):
        helper_config.get_list_val("KB_TEST_LIST")


def test_knowledge_config_from_env(helper_config, monkeypatch) -> None:
    monkeypatch.setenv("KB_CHUNK_SIZE", "800")
    monkeypatch.setenv("KB_CHUNK_OVERLAP", "100")
    monkeypatch.setenv("KB_PROVIDER_TIMEOUT_SECONDS", "12")

    config = KnowledgeConfig.from_helper_config(helper_config)

    assert config.chunk_size == 800
    assert config.chunk_overlap == 100
    assert config.provider_timeout_seconds == 12.0
    assert config.max_indexed_chunks == 2000
    assert config.retention_period_ms == 90 * 24 * 60 * 60 * 1000


@pytest.mark.parametrize("overrides", [
    {"chunk_size": 100, "chunk_overlap": 100},
    {"chunk_overlap": -1},
    {"embedding_batch_size": 0},
    {"search_limit_default": 30, "search_limit_max": 20},
])
def test_knowledge_config_rejects_inconsistent_values(overrides) -> None:
    with pytest.raises(ValidationError):
        KnowledgeConfig(**overrides)


def test_extracted_text_is_normalized() -> None:
    raw = "Title\r\n\r\n\r\n\r\nBody\twith   tabs\0and nul\rend"

    assert normalize_extracted_text(raw) == "Title\n\nBody with tabs and nul\nend"


def test_text_and_pdf_extraction(helper_config) -> None:
    extractor = TextExtractor(helper_config)
    pdf = fitz.open()
    pdf.new_page().insert_text((72, 72), "Solar inverters")
    pdf_bytes = pdf.tobytes()
    pdf.close()

    assert asyncio.run(extractor.extract_text(b"a  b", "notes.md")) == "a b"
    assert asyncio.run(extractor.extract_text(b"plain", "noext", mime_type="text/plain")) == "plain"
    assert "Solar inverters" in asyncio.run(extractor.extract_text(pdf_bytes, "guide.pdf"))


def test_extraction_errors(helper_config) -> None:
    extractor = TextExtractor(helper_config)

    with pytest.raises(UnsupportedFormatError):
        asyncio.run(extractor.extract_text(b"\x89PNG", "photo.png", mime_type="image/png"))
    with pytest.raises(UnsupportedFormatError):
        asyncio.run(extractor.extract_text(b"not a pdf", "broken.pdf"))
    with pytest.raises(EmptyExtractionError):
        asyncio.run(extractor.extract_text(b" \n\t ", "blank.txt"))


def test_blob_store_round_trip_and_path_guard(blob_store) -> None:
    blob_ref = asyncio.run(blob_store.do_put("m1/../m2", b"data", "../../etc/passwd"))

    assert blob_ref.startswith("m1_.._m2/")
    assert "/" not in blob_ref.split("/", 1)[1]
    assert asyncio.run(blob_store.do_get(blob_ref)) == b"data"
    assert asyncio.run(blob_store.do_delete(blob_ref)) is True
    assert asyncio.run(blob_store.do_delete(blob_ref)) is False
    with pytest.raises(BlobNotFoundError):
        asyncio.run(blob_store.do_get("../outside"))
