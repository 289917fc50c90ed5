import asyncio
import re
import uuid
from pathlib import Path

from shared.exceptions.errors import BlobNotFoundError
from shared.helper.HelperConfig import HelperConfig
from shared.stores.blob.BlobStoreInterface import BlobStoreInterface

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class BlobStoreLocal(BlobStoreInterface):
    """Blob store on the local filesystem: <root>/<owner>/<uuid>[-<name>]."""

    def __init__(self, helper_config: HelperConfig, root: str | Path | None = None):
        super().__init__(helper_config=helper_config)
        self._root = Path(root or self.get_config_val("ROOT", default="./data/blobs")).resolve()

    def _get_engine_name(self) -> str:
        return "Local"

    async def boot(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        self.logging.info("Blob store rooted at %s.", self._root)

    def _path_for(self, blob_ref: str) -> Path:
        path = (self._root / blob_ref).resolve()
        if self._root not in path.parents:
            raise BlobNotFoundError(blob_ref)
        return path

    async def do_put(self, owner_id: str, data: bytes, display_name: str | None = None) -> str:
        owner_dir = _UNSAFE_CHARS.sub("_", owner_id).strip("._") or "owner"
        name = uuid.uuid4().hex
        if display_name:
            suffix = _UNSAFE_CHARS.sub("_", display_name)[-80:].strip("._")
            if suffix:
                name = f"{name}-{suffix}"
        blob_ref = f"{owner_dir}/{name}"
        path = self._path_for(blob_ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        self.logging.debug("Stored blob %s (%d bytes).", blob_ref, len(data))
        return blob_ref

    async def do_get(self, blob_ref: str) -> bytes:
        path = self._path_for(blob_ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise BlobNotFoundError(blob_ref) from exc

    async def do_exists(self, blob_ref: str) -> bool:
        try:
            return self._path_for(blob_ref).is_file()
        except BlobNotFoundError:
            return False

    async def do_delete(self, blob_ref: str) -> bool:
        path = self._path_for(blob_ref)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        return True
