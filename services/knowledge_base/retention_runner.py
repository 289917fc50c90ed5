"""Retention runner entry point.

Purges staged upload blobs whose retention period has passed, for every
owner. Set KB_RUNNER_REHYDRATE_OWNERS to a bracket list of owner ids to
rehydrate missing documents for them afterwards.

Usage:
    python -m services.knowledge_base.retention_runner
"""

import asyncio

from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.exceptions.errors import KnowledgeBaseError
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.config import KnowledgeConfig
from shared.stores.blob.BlobStoreManager import BlobStoreManager
from shared.stores.meta.MetaStoreManager import MetaStoreManager
from services.knowledge_base.KnowledgeService import KnowledgeService


async def main() -> None:
    """Run one purge pass and the optional rehydrate pass."""
    logger = setup_logging()
    helper_config = HelperConfig(logger=logger)
    config = KnowledgeConfig.from_helper_config(helper_config)
    rehydrate_owners = helper_config.get_list_val("KB_RUNNER_REHYDRATE_OWNERS", default=[])

    meta_store = MetaStoreManager(helper_config=helper_config).get_store()
    blob_store = BlobStoreManager(helper_config=helper_config).get_store()
    rag_client = RAGClientManager(helper_config=helper_config).get_client()
    embed_client = EmbedClientManager(helper_config=helper_config).get_client()
    llm_client = LLMClientManager(helper_config=helper_config).get_client()

    try:
        await meta_store.boot()
        await blob_store.boot()

        # purging only needs the stores; the providers are booted for rehydration
        if rehydrate_owners:
            for client in (rag_client, embed_client, llm_client):
                await client.boot()
                await client.do_healthcheck()
            await rag_client.do_ensure_collection(config.embedding_dimensions, distance=embed_client.embed_distance)

        service = KnowledgeService.from_components(
            helper_config=helper_config,
            config=config,
            embed_client=embed_client,
            llm_client=llm_client,
            rag_client=rag_client,
            meta_store=meta_store,
            blob_store=blob_store,
        )

        purged = await service.purge_expired()
        logger.info("Retention pass purged %d staged upload(s).", purged.purged_count)

        for owner_id in rehydrate_owners:
            try:
                result = await service.rehydrate(owner_id, mode="missing-only")
            except KnowledgeBaseError as e:
                logger.error("Rehydrate for owner %s failed: %s. Continuing with next owner.", owner_id, e)
                continue
            logger.info(
                "Rehydrated owner %s: %d reindexed, %d skipped.",
                owner_id, result.rehydrated_count, result.skipped_count,
            )
    finally:
        for client in (rag_client, embed_client, llm_client):
            await client.close()
        await blob_store.close()
        await meta_store.close()


if __name__ == "__main__":
    asyncio.run(main())
