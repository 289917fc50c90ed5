from abc import ABC, abstractmethod
from typing import Any

from shared.helper.HelperConfig import HelperConfig


class BlobStoreInterface(ABC):
    """Raw storage for uploaded files, addressed by opaque blob references.

    Configuration keys are namespaced as "BLOB_<ENGINE>_<KEY>".
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    def get_config_val(self, raw_key: str, default: Any = None) -> str:
        return self._helper_config.get_string_val(f"BLOB_{self.get_engine_name().upper()}_{raw_key.upper()}", default=default)

    async def boot(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def do_put(self, owner_id: str, data: bytes, display_name: str | None = None) -> str:
        """Store bytes and return the new blob reference."""
        pass

    @abstractmethod
    async def do_get(self, blob_ref: str) -> bytes:
        """
        Raises:
            BlobNotFoundError: If nothing is stored under blob_ref.
        """
        pass

    @abstractmethod
    async def do_exists(self, blob_ref: str) -> bool:
        pass

    @abstractmethod
    async def do_delete(self, blob_ref: str) -> bool:
        """Delete a blob. Returns False when it was already gone."""
        pass
