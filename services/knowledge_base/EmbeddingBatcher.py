from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.exceptions.errors import EmbeddingProviderError, ProviderError
from shared.helper.HelperAsync import with_timeout
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig


class EmbeddingBatcher:
    """Embeds chunk lists in sequential fixed-size batches with strict 1:1 output."""

    def __init__(self, helper_config: HelperConfig, embed_client: EmbedClientInterface, config: KnowledgeConfig):
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._config = config

    async def embed(self, chunks: list[str]) -> list[list[float]]:
        """Embed every chunk, batch by batch, in order.

        Either all vectors are returned or an error is raised; nothing partial
        escapes.

        Args:
            chunks (list[str]): Texts to embed.

        Returns:
            list[list[float]]: One vector per chunk, same order.

        Raises:
            EmbeddingProviderError: If a batch fails or times out, returns the
                wrong number of vectors, or a vector of the wrong dimension.
        """
        vectors: list[list[float]] = []
        batch_size = self._config.embedding_batch_size
        total_batches = (len(chunks) + batch_size - 1) // batch_size
        for batch_number, start in enumerate(range(0, len(chunks), batch_size), start=1):
            batch = chunks[start: start + batch_size]
            batch_vectors = await self._embed_batch(batch)
            vectors.extend(batch_vectors)
            self.logging.debug("Embedded batch %d/%d (%d texts).", batch_number, total_batches, len(batch))
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query string."""
        return (await self._embed_batch([text]))[0]

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        try:
            result = await with_timeout(
                self._embed_client.do_embed(batch),
                self._config.provider_timeout_seconds,
                "embed",
            )
        except EmbeddingProviderError:
            raise
        except ProviderError as exc:
            raise EmbeddingProviderError(str(exc)) from exc

        if len(result) != len(batch):
            raise EmbeddingProviderError(
                f"Embedding provider returned {len(result)} vectors for {len(batch)} inputs."
            )
        expected = self._config.embedding_dimensions
        for vector in result:
            if len(vector) != expected:
                raise EmbeddingProviderError(
                    f"Embedding provider returned a vector of dimension {len(vector)}, expected {expected}."
                )
        return result
