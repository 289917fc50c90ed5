import asyncio

import pytest

from shared.exceptions.errors import EmbeddingProviderError, ProviderError
from services.knowledge_base.EmbeddingBatcher import EmbeddingBatcher


class _StubShortEmbedClient:
    async def do_embed(self, texts):
        return [[1.0, 0.0, 0.0, 0.0]]


class _StubWrongSizeEmbedClient:
    async def do_embed(self, texts):
        return [[1.0, 0.0] for _ in texts]


def test_vectors_come_back_in_input_order_across_batches(helper_config, kb_config, embed_client) -> None:
    batcher = EmbeddingBatcher(helper_config, embed_client, kb_config)
    chunks = ["a", "bb", "ccc", "dddd", "eeeee"]

    vectors = asyncio.run(batcher.embed(chunks))

    assert [vector[0] for vector in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert embed_client.calls == [["a", "bb"], ["ccc", "dddd"], ["eeeee"]]


def test_count_mismatch_is_rejected(helper_config, kb_config) -> None:
    batcher = EmbeddingBatcher(helper_config, _StubShortEmbedClient(), kb_config)

    with pytest.raises(EmbeddingProviderError, match="1 vectors for 2 inputs"):
        asyncio.run(batcher.embed(["one", "two"]))


def test_dimension_mismatch_is_rejected(helper_config, kb_config) -> None:
    batcher = EmbeddingBatcher(helper_config, _StubWrongSizeEmbedClient(), kb_config)

    with pytest.raises(EmbeddingProviderError, match="dimension 2, expected 4"):
        asyncio.run(batcher.embed(["one"]))


def test_provider_errors_surface_as_embedding_errors(helper_config, kb_config, embed_client) -> None:
    embed_client.fail_with = ProviderError("connection refused")
    batcher = EmbeddingBatcher(helper_config, embed_client, kb_config)

    with pytest.raises(EmbeddingProviderError, match="connection refused"):
        asyncio.run(batcher.embed(["one", "two", "three"]))
    assert len(embed_client.calls) == 1


def test_embed_query_returns_one_vector(helper_config, kb_config, embed_client) -> None:
    batcher = EmbeddingBatcher(helper_config, embed_client, kb_config)

    vector = asyncio.run(batcher.embed_query("hello"))

    assert vector == [5.0, 1.0, 0.0, 0.0]
