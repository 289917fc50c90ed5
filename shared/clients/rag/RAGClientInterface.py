from abc import abstractmethod
from typing import Any
import asyncio
import json
import uuid

import httpx
from shared.clients.rag.models.ChunkPoint import ChunkPoint, IndexedDocument, SearchHit
from shared.clients.rag.models.Scroll import ScrollResult
from shared.clients.ClientInterface import ClientInterface
from shared.exceptions.errors import ChunkStoreError, ProviderError
from shared.helper.HelperConfig import HelperConfig


def make_point_id(owner_id: str, document_ref: str, version: str, chunk_index: int) -> str:
    """Build a deterministic UUID5 point ID for one chunk of one indexing run.

    The version is part of the key, so a reindex writes next to the old
    points instead of overwriting them in place.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"{owner_id}:{document_ref}:{version}:{chunk_index}"))


class RAGClientInterface(ClientInterface):
    """Chunk store: owner-scoped vector storage for document chunks.

    Every operation takes an owner_id and adds it to the backend filter; there
    is no call that reads or writes across owners.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @staticmethod
    def _require_owner(owner_id: str) -> str:
        if not owner_id or not str(owner_id).strip():
            raise ValueError("owner_id is required for every chunk store operation")
        return str(owner_id)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "rag"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_scroll(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_points(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_search(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_count(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_create_collection(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_create_index(self) -> str:
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def build_filter(self, must: dict[str, Any], must_not: dict[str, Any] | None = None) -> dict:
        """
        Translates equality conditions into the backend's filter syntax.

        Args:
            must (dict[str, Any]): Payload field -> value that every match must carry.
            must_not (dict[str, Any] | None): Payload field -> value that excludes a point.

        Returns:
            dict: The backend filter.
        """
        pass

    @abstractmethod
    def get_scroll_payload(self, filter: dict, with_payload: bool | list, limit: int, offset: str | int | None = None) -> dict:
        pass

    @abstractmethod
    def get_count_payload(self, filter: dict) -> dict:
        pass

    @abstractmethod
    def get_delete_payload(self, filter: dict) -> dict:
        pass

    @abstractmethod
    def get_search_payload(self, filter: dict, vector: list[float], limit: int) -> dict:
        pass

    @abstractmethod
    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_scroll_content(self, raw_response: dict) -> list[dict]:
        pass

    @abstractmethod
    def extract_next_page_offset(self, raw_response: dict) -> str | int | None:
        """
        Returns the cursor of the next scroll page, or None when this was the last one.
        """
        pass

    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        pass

    ##########################################
    ########### LOW LEVEL REQUESTS ###########
    ##########################################

    async def _post_json(self, endpoint: str, body: dict, method: str = "POST", params: dict | None = None) -> httpx.Response:
        try:
            return await self.do_request(
                method=method,
                content=json.dumps(body),
                endpoint=endpoint,
                params=params,
                additional_headers={"Content-Type": "application/json"},
                raise_on_error=True,
            )
        except ProviderError as exc:
            raise ChunkStoreError(str(exc)) from exc

    async def do_existence_check(self) -> bool:
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_check_collection_existence())
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_ensure_collection(self, vector_size: int, distance: str = "Cosine") -> bool:
        """Create the collection and its owner/document payload indexes if missing.

        Args:
            vector_size (int): Dimension of the stored vectors.
            distance (str): Distance metric, e.g. "Cosine".

        Returns:
            bool: True if the collection was created by this call.
        """
        if await self.do_existence_check():
            return False
        await self._post_json(self._get_endpoint_create_collection(), self.get_create_collection_payload(vector_size, distance), method="PUT")
        for field_name in ("owner_id", "document_ref"):
            await self._post_json(
                self._get_endpoint_create_index(),
                {"field_name": field_name, "field_schema": "keyword"},
                method="PUT",
            )
        self.logging.info("Created chunk collection with vector size %d (%s).", vector_size, distance, color="green")
        return True

    async def do_upsert_points(self, points: list[dict[str, Any]]) -> None:
        await self._post_json(self._get_endpoint_points(), {"points": points}, method="PUT", params={"wait": "true"})

    async def do_delete_points_by_filter(self, filter: dict) -> None:
        await self._post_json(self._get_endpoint_delete_points(), self.get_delete_payload(filter), params={"wait": "true"})

    async def do_count(self, filter: dict) -> int:
        resp = await self._post_json(self._get_endpoint_count(), self.get_count_payload(filter))
        return int(resp.json().get("result", {}).get("count", 0))

    async def do_scroll(self, filter: dict, with_payload: bool | list, limit: int, offset: str | int | None = None) -> ScrollResult:
        """Scroll a single page of points matching a filter."""
        resp = await self._post_json(self._get_endpoint_scroll(), self.get_scroll_payload(filter, with_payload, limit, offset))
        raw_response = resp.json()
        return ScrollResult(
            result=self.extract_scroll_content(raw_response),
            next_page_offset=self.extract_next_page_offset(raw_response),
        )

    async def do_scroll_all(self, filter: dict, with_payload: bool | list, page_size: int = 1000) -> ScrollResult:
        """Scroll through every point matching the filter, following next_page_offset."""
        all_points: list[dict] = []
        offset: str | int | None = None
        while True:
            page = await self.do_scroll(filter=filter, with_payload=with_payload, limit=page_size, offset=offset)
            all_points.extend(page.result)
            offset = page.next_page_offset
            if offset is None:
                break
        return ScrollResult(result=all_points)

    ##########################################
    ############# CHUNK STORE ################
    ##########################################

    async def do_replace_document(
        self,
        owner_id: str,
        document_ref: str,
        display_name: str,
        chunks: list[str],
        vectors: list[list[float]],
        batch_size: int = 20,
    ) -> str:
        """Replace every chunk of a document with a new set, atomically for readers.

        New points are written under a fresh version tag first; only once all
        batches are stored are points of the document carrying any other
        version deleted. On any failure, a failed flip or a cancellation
        included, the new version is removed again, so the previous version
        stays the only searchable one.

        Args:
            owner_id (str): Knowledge store namespace.
            document_ref (str): Document identifier.
            display_name (str): Citation title stored with each chunk.
            chunks (list[str]): Chunk texts, in order.
            vectors (list[list[float]]): One vector per chunk.
            batch_size (int): Points per upsert request.

        Returns:
            str: The version tag now live for the document.

        Raises:
            ValueError: If owner_id is blank or chunks and vectors differ in length.
            ChunkStoreError: If the backend rejects a write or the flip delete.
        """
        owner_id = self._require_owner(owner_id)
        if len(chunks) != len(vectors):
            raise ValueError(f"Got {len(chunks)} chunks but {len(vectors)} vectors.")
        version = uuid.uuid4().hex

        points: list[dict] = []
        for chunk_index, (chunk, vector) in enumerate(zip(chunks, vectors)):
            payload = ChunkPoint(
                owner_id=owner_id,
                document_ref=document_ref,
                display_name=display_name,
                chunk_index=chunk_index,
                chunk_text=chunk,
                version=version,
            )
            points.append({
                "id": make_point_id(owner_id, document_ref, version, chunk_index),
                "vector": vector,
                "payload": payload.model_dump(exclude_none=True),
            })

        try:
            for batch_start in range(0, len(points), batch_size):
                await self.do_upsert_points(points[batch_start: batch_start + batch_size])
            # flip: drop everything of this document that is not the new version
            await self.do_delete_points_by_filter(
                self.build_filter(
                    must={"owner_id": owner_id, "document_ref": document_ref},
                    must_not={"version": version},
                )
            )
        except BaseException:
            # also on cancellation (timeouts): the old version must stay the only live one
            self.logging.error("Replace of document '%s' did not complete; removing version %s.", document_ref, version)
            await asyncio.shield(self._discard_version(owner_id, document_ref, version))
            raise

        self.logging.debug("Document '%s' now at version %s with %d chunks.", document_ref, version, len(points))
        return version

    async def _discard_version(self, owner_id: str, document_ref: str, version: str) -> None:
        try:
            await self.do_delete_document_version(owner_id, document_ref, version)
        except ChunkStoreError as exc:
            # leftovers are removed by the next successful replace
            self.logging.warning("Could not discard version %s of '%s': %s", version, document_ref, exc)

    async def do_delete_document_version(self, owner_id: str, document_ref: str, version: str) -> None:
        """Delete the chunks one indexing run wrote, leaving other versions alone."""
        owner_id = self._require_owner(owner_id)
        await self.do_delete_points_by_filter(
            self.build_filter(must={"owner_id": owner_id, "document_ref": document_ref, "version": version})
        )

    async def do_delete_document(self, owner_id: str, document_ref: str) -> None:
        """Delete every chunk of one document."""
        owner_id = self._require_owner(owner_id)
        await self.do_delete_points_by_filter(self.build_filter(must={"owner_id": owner_id, "document_ref": document_ref}))

    async def do_vector_search(self, owner_id: str, vector: list[float], limit: int) -> list[SearchHit]:
        """Nearest-neighbour search limited to one owner's chunks.

        Returns:
            list[SearchHit]: At most limit hits, best match first.
        """
        owner_id = self._require_owner(owner_id)
        payload = self.get_search_payload(self.build_filter(must={"owner_id": owner_id}), vector, limit)
        resp = await self._post_json(self._get_endpoint_search(), payload)
        return self.extract_search_hits(resp.json())

    async def do_list_documents(self, owner_id: str) -> list[IndexedDocument]:
        """List the distinct documents an owner has chunks for, sorted by display name."""
        owner_id = self._require_owner(owner_id)
        scroll = await self.do_scroll_all(
            filter=self.build_filter(must={"owner_id": owner_id}),
            with_payload=["document_ref", "display_name"],
        )
        documents: dict[str, IndexedDocument] = {}
        for point in scroll.result:
            payload = point.get("payload") or {}
            ref = payload.get("document_ref")
            if ref and ref not in documents:
                documents[ref] = IndexedDocument(ref=ref, display_name=payload.get("display_name") or ref)
        return sorted(documents.values(), key=lambda doc: (doc.display_name.lower(), doc.ref))

    async def do_count_document_chunks(self, owner_id: str, document_ref: str) -> int:
        """Number of chunks currently stored for one document."""
        owner_id = self._require_owner(owner_id)
        return await self.do_count(self.build_filter(must={"owner_id": owner_id, "document_ref": document_ref}))
