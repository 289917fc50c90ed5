from abc import ABC, abstractmethod
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.stores.meta.models.DocumentDigest import DocumentDigest
from shared.stores.meta.models.KnowledgeStore import KnowledgeStore
from shared.stores.meta.models.StagedUpload import StagedUpload


class MetaStoreInterface(ABC):
    """Metadata store: knowledge store records, document digests and the staged upload ledger.

    Configuration keys are namespaced as "META_<ENGINE>_<KEY>".
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    def get_config_val(self, raw_key: str, default: Any = None) -> str:
        return self._helper_config.get_string_val(f"META_{self.get_engine_name().upper()}_{raw_key.upper()}", default=default)

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    @abstractmethod
    async def boot(self) -> None:
        """Open connections and create missing tables."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def do_healthcheck(self) -> bool:
        pass

    ##########################################
    ############ KNOWLEDGE STORES ############
    ##########################################

    @abstractmethod
    async def do_ensure_store(self, owner_id: str, store_ref: str, now: int) -> tuple[KnowledgeStore, bool]:
        """Return the owner's store record, creating it on first use.

        Returns:
            tuple[KnowledgeStore, bool]: The record and whether this call created it.
        """
        pass

    @abstractmethod
    async def do_get_store(self, owner_id: str) -> KnowledgeStore | None:
        pass

    ##########################################
    ################ DIGESTS #################
    ##########################################

    @abstractmethod
    async def do_insert_digest_if_absent(self, digest: DocumentDigest) -> bool:
        """Insert an active digest unless one with the same normalized name is already active.

        This is the compare-and-swap that decides concurrent first-time
        uploads of the same name.

        Returns:
            bool: True if inserted, False if another active digest holds the name.
        """
        pass

    @abstractmethod
    async def do_upsert_digest(self, digest: DocumentDigest) -> None:
        """Insert or overwrite the digest keyed by (owner_id, document_ref)."""
        pass

    @abstractmethod
    async def do_list_digests(self, owner_id: str, include_deleted: bool = False) -> list[DocumentDigest]:
        """Digests of one owner ordered by display name."""
        pass

    @abstractmethod
    async def do_get_active_digest_by_name(self, owner_id: str, normalized_name: str) -> DocumentDigest | None:
        pass

    @abstractmethod
    async def do_get_digest(self, owner_id: str, document_ref: str) -> DocumentDigest | None:
        pass

    @abstractmethod
    async def do_mark_digest_deleted(self, owner_id: str, document_ref: str, now: int) -> bool:
        """Flip the digest to "deleted". Returns False when there was no active digest."""
        pass

    ##########################################
    ############ STAGED UPLOADS ##############
    ##########################################

    @abstractmethod
    async def do_create_staged(self, upload: StagedUpload) -> StagedUpload:
        pass

    @abstractmethod
    async def do_update_staged(self, upload_id: str, **changes: Any) -> StagedUpload:
        """Patch fields of one row.

        Raises:
            KeyError: If the row does not exist.
        """
        pass

    @abstractmethod
    async def do_list_staged(self, owner_id: str) -> list[StagedUpload]:
        """All rows of one owner, oldest first."""
        pass

    @abstractmethod
    async def do_list_staged_by_document(self, owner_id: str, document_ref: str) -> list[StagedUpload]:
        pass

    @abstractmethod
    async def do_list_expired(self, now: int, owner_id: str | None = None) -> list[StagedUpload]:
        """Rows with expires_at <= now that are not purged yet."""
        pass

    @abstractmethod
    async def do_list_rehydratable(self, owner_id: str) -> list[StagedUpload]:
        """Rows whose blob is still present and was (or can be) indexed, oldest first."""
        pass

    @abstractmethod
    async def do_mark_purged(self, upload_ids: list[str], now: int) -> int:
        """Mark rows purged in one transaction. Already purged rows are left alone.

        Returns:
            int: Number of rows that transitioned.
        """
        pass
