"""FastAPI application entry point for the knowledge base engine."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig
from shared.exceptions.errors import (
    DocumentNotFoundError,
    DuplicateDocumentError,
    EmptyDocumentError,
    ExtractionFailed,
    InvalidInputError,
    KnowledgeBaseError,
    ProviderError,
    ProviderTimeoutError,
    TooManyChunksError,
)
from shared.clients.ClientInterface import ClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.stores.blob.BlobStoreManager import BlobStoreManager
from shared.stores.meta.MetaStoreManager import MetaStoreManager
from services.knowledge_base.KnowledgeService import KnowledgeService
from server.models.responses import ErrorResponse
from server.routers.ChatRouter import router as chat_router
from server.routers.KnowledgeRouter import router as knowledge_router
from server.routers.MaintenanceRouter import router as maintenance_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")

# first match wins, so subclasses come before their parents
ERROR_STATUS_CODES: list[tuple[type[KnowledgeBaseError], int]] = [
    (InvalidInputError, 422),
    (ExtractionFailed, 422),
    (EmptyDocumentError, 422),
    (TooManyChunksError, 413),
    (DocumentNotFoundError, 404),
    (DuplicateDocumentError, 409),
    (ProviderTimeoutError, 504),
    (ProviderError, 502),
]


def status_code_for(error: KnowledgeBaseError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)
    app.state.api_key = app.state.helper_config.get_string_val("API_SERVER_API_KEY")
    config = KnowledgeConfig.from_helper_config(app.state.helper_config)

    meta_store = MetaStoreManager(helper_config=app.state.helper_config).get_store()
    blob_store = BlobStoreManager(helper_config=app.state.helper_config).get_store()
    rag_client = RAGClientManager(helper_config=app.state.helper_config).get_client()
    embed_client = EmbedClientManager(helper_config=app.state.helper_config).get_client()
    llm_client = LLMClientManager(helper_config=app.state.helper_config).get_client()
    clients: list[ClientInterface] = [rag_client, embed_client, llm_client]

    logging.info("Booting stores and clients...")
    await meta_store.boot()
    await blob_store.boot()
    for client in clients:
        await client.boot()
    logging.info("All stores and clients booted successfully.")

    await check_connections(clients)
    await rag_client.do_ensure_collection(config.embedding_dimensions, distance=embed_client.embed_distance)

    app.state.blob_store = blob_store
    app.state.knowledge_service = KnowledgeService.from_components(
        helper_config=app.state.helper_config,
        config=config,
        embed_client=embed_client,
        llm_client=llm_client,
        rag_client=rag_client,
        meta_store=meta_store,
        blob_store=blob_store,
    )

    # while the app is running...
    yield

    # when the app shuts down, close all connections
    logging.info("Shutting down, closing all clients and stores...")
    for client in clients:
        await client.close()
    await blob_store.close()
    await meta_store.close()
    logging.info("All clients and stores closed.")


app = FastAPI(
    title="knowledge_base",
    description=(
        "Per-owner knowledge base engine. Uploaded documents are chunked, embedded "
        "and indexed into a vector database with a compact digest per document. "
        "Chat turns are gated, rewritten into standalone queries and answered with "
        "an evidence pack of cited snippets via POST /chat."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(maintenance_router)
app.include_router(knowledge_router)
app.include_router(chat_router)


@app.exception_handler(KnowledgeBaseError)
async def handle_knowledge_base_error(request: Request, error: KnowledgeBaseError) -> JSONResponse:
    status_code = status_code_for(error)
    if status_code >= 500:
        logging.error("%s %s failed: %s", request.method, request.url.path, error)
    else:
        logging.warning("%s %s rejected (%d): %s", request.method, request.url.path, status_code, error)
    body = ErrorResponse(error=error.__class__.__name__, detail=str(error))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def check_connections(clients: list[ClientInterface]) -> None:
    """Check connectivity to all configured backends on startup.

    The chunk store and both model providers are required; without any of
    them neither ingestion nor chat can be served.

    Raises:
        Exception: If a backend is not reachable.
    """
    for client in clients:
        result = await client.do_healthcheck()
        if not result.is_success:
            raise Exception(
                f"{client.get_client_type()} client '{client.__class__.__name__}' is not reachable "
                f"(status {result.status_code}). Cannot serve requests."
            )


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting knowledge_base API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
