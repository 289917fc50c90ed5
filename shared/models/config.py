from pydantic import BaseModel, model_validator

from shared.helper.HelperConfig import HelperConfig

DAY_MS = 24 * 60 * 60 * 1000


class EnvConfig(BaseModel):
    """
    A single environment setting a client or store requires.

    Attributes:
        env_key (str): The raw key; prefixed with "<TYPE>_<ENGINE>_" when read.
        val_type (str): "string", "number", "bool" or "list".
        default (str | int | bool | list | None): Value used when unset. None marks the key as required.
    """

    env_key: str
    val_type: str
    default: str | int | bool | list | None = None


class KnowledgeConfig(BaseModel):
    """Tunables of the knowledge base engine.

    Attributes:
        chunk_size:               Window length in characters.
        chunk_overlap:            Characters shared by consecutive windows; must be below chunk_size.
        max_indexed_chunks:       Documents producing more chunks are rejected before embedding.
        embedding_batch_size:     Texts per embedding request.
        upsert_batch_size:        Points per chunk store write.
        embedding_dimensions:     Expected vector length from the embedding provider.
        retention_period_ms:      Lifetime of a staged upload blob.
        search_limit_default:     k used when a search passes no limit.
        search_limit_max:         Upper clamp for k.
        digest_sample_char_limit: Characters of extracted text handed to the digest builder.
        provider_timeout_seconds: Deadline applied to each external call.
    """

    chunk_size: int = 2000
    chunk_overlap: int = 500
    max_indexed_chunks: int = 2000
    embedding_batch_size: int = 32
    upsert_batch_size: int = 20
    embedding_dimensions: int = 768
    retention_period_ms: int = 90 * DAY_MS
    search_limit_default: int = 5
    search_limit_max: int = 20
    digest_sample_char_limit: int = 6000
    provider_timeout_seconds: float = 60.0

    @model_validator(mode="after")
    def _check_bounds(self) -> "KnowledgeConfig":
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        for name in ("max_indexed_chunks", "embedding_batch_size", "upsert_batch_size",
                     "embedding_dimensions", "search_limit_default", "search_limit_max"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.search_limit_default > self.search_limit_max:
            raise ValueError("search_limit_default must not exceed search_limit_max")
        if self.retention_period_ms < 0:
            raise ValueError("retention_period_ms must not be negative")
        return self

    @classmethod
    def from_helper_config(cls, helper_config: HelperConfig) -> "KnowledgeConfig":
        """Build the config from KB_* environment variables, falling back to defaults.

        Raises:
            ValueError: If a value is malformed or the combination is invalid.
        """
        defaults = cls()
        return cls(
            chunk_size=helper_config.get_int_val("KB_CHUNK_SIZE", default=defaults.chunk_size),
            chunk_overlap=helper_config.get_int_val("KB_CHUNK_OVERLAP", default=defaults.chunk_overlap),
            max_indexed_chunks=helper_config.get_int_val("KB_MAX_INDEXED_CHUNKS", default=defaults.max_indexed_chunks),
            embedding_batch_size=helper_config.get_int_val("KB_EMBEDDING_BATCH_SIZE", default=defaults.embedding_batch_size),
            upsert_batch_size=helper_config.get_int_val("KB_UPSERT_BATCH_SIZE", default=defaults.upsert_batch_size),
            embedding_dimensions=helper_config.get_int_val("KB_EMBEDDING_DIMENSIONS", default=defaults.embedding_dimensions),
            retention_period_ms=helper_config.get_int_val("KB_RETENTION_PERIOD_MS", default=defaults.retention_period_ms),
            search_limit_default=helper_config.get_int_val("KB_SEARCH_LIMIT_DEFAULT", default=defaults.search_limit_default),
            search_limit_max=helper_config.get_int_val("KB_SEARCH_LIMIT_MAX", default=defaults.search_limit_max),
            digest_sample_char_limit=helper_config.get_int_val("KB_DIGEST_SAMPLE_CHAR_LIMIT", default=defaults.digest_sample_char_limit),
            provider_timeout_seconds=float(helper_config.get_number_val("KB_PROVIDER_TIMEOUT_SECONDS", default=defaults.provider_timeout_seconds)),
        )
