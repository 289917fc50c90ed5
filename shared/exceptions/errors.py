"""Error hierarchy of the knowledge base engine.

Input and capacity errors describe a problem with what the caller handed in.
Provider errors wrap failures of an external collaborator (embedding model,
generative model, chunk store) and are the ones advisory steps fall back on.
"""


class KnowledgeBaseError(Exception):
    """Base class of every error raised by the engine."""


##########################################
################# INPUT ##################
##########################################

class InvalidInputError(KnowledgeBaseError):
    """The request itself is malformed (e.g. no files in an upload)."""


class ExtractionFailed(KnowledgeBaseError):
    """Text could not be obtained from an uploaded file."""


class UnsupportedFormatError(ExtractionFailed):
    def __init__(self, display_name: str, mime_type: str | None = None):
        self.display_name = display_name
        self.mime_type = mime_type
        super().__init__(
            f"Unsupported file type for '{display_name}' ({mime_type or 'unknown'}). "
            "Upload PDF or text-based files."
        )


class EmptyExtractionError(ExtractionFailed):
    def __init__(self, display_name: str):
        self.display_name = display_name
        super().__init__(f"No extractable text found in '{display_name}'.")


class BlobNotFoundError(ExtractionFailed):
    def __init__(self, blob_ref: str):
        self.blob_ref = blob_ref
        super().__init__(f"Staged file not found in storage: '{blob_ref}'.")


class EmptyDocumentError(KnowledgeBaseError):
    def __init__(self, display_name: str):
        self.display_name = display_name
        super().__init__(f"Document '{display_name}' produced no indexable chunks.")


class DuplicateDocumentError(KnowledgeBaseError):
    def __init__(self, display_name: str, document_ref: str | None = None):
        self.display_name = display_name
        self.document_ref = document_ref
        super().__init__(f"A document named '{display_name}' is already indexed.")


class DocumentNotFoundError(KnowledgeBaseError):
    def __init__(self, document_ref: str):
        self.document_ref = document_ref
        super().__init__(f"Document '{document_ref}' does not exist for this owner.")


##########################################
############### CAPACITY #################
##########################################

class TooManyChunksError(KnowledgeBaseError):
    def __init__(self, display_name: str, chunk_count: int, max_chunks: int):
        self.display_name = display_name
        self.chunk_count = chunk_count
        self.max_chunks = max_chunks
        super().__init__(
            f"Document '{display_name}' is too large: {chunk_count} chunks exceed the limit of {max_chunks}."
        )


##########################################
############### PROVIDER #################
##########################################

class ProviderError(KnowledgeBaseError):
    """An external collaborator failed or answered with something unusable."""


class ProviderTimeoutError(ProviderError):
    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"'{operation}' did not finish within {timeout_seconds:g}s.")


class EmbeddingProviderError(ProviderError):
    """Embedding failed, or returned the wrong number or size of vectors."""


class ChunkStoreError(ProviderError):
    """The chunk store rejected a write, delete or search."""
