from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.ChunkPoint import SearchHit
from shared.models.config import EnvConfig


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default="knowledge_chunks", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default="knowledge_chunks"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_scroll(self) -> str:
        return f"/collections/{self._collection_name}/points/scroll"

    def _get_endpoint_points(self) -> str:
        return f"/collections/{self._collection_name}/points"

    def _get_endpoint_delete_points(self) -> str:
        return f"/collections/{self._collection_name}/points/delete"

    def _get_endpoint_search(self) -> str:
        return f"/collections/{self._collection_name}/points/search"

    def _get_endpoint_count(self) -> str:
        return f"/collections/{self._collection_name}/points/count"

    def _get_endpoint_check_collection_existence(self) -> str:
        return f"/collections/{self._collection_name}/exists"

    def _get_endpoint_create_collection(self) -> str:
        return f"/collections/{self._collection_name}"

    def _get_endpoint_create_index(self) -> str:
        return f"/collections/{self._collection_name}/index"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def build_filter(self, must: dict[str, Any], must_not: dict[str, Any] | None = None) -> dict:
        qdrant_filter: dict = {
            "must": [{"key": key, "match": {"value": value}} for key, value in must.items()],
        }
        if must_not:
            qdrant_filter["must_not"] = [{"key": key, "match": {"value": value}} for key, value in must_not.items()]
        return qdrant_filter

    def get_scroll_payload(self, filter: dict, with_payload: bool | list, limit: int, offset: str | int | None = None) -> dict:
        payload = {
            "filter": filter,
            "limit": limit,
            "with_payload": with_payload,
            "with_vector": False,
        }
        if offset is not None:
            payload["offset"] = offset
        return payload

    def get_count_payload(self, filter: dict) -> dict:
        return {"filter": filter, "exact": True}

    def get_delete_payload(self, filter: dict) -> dict:
        return {"filter": filter}

    def get_search_payload(self, filter: dict, vector: list[float], limit: int) -> dict:
        return {
            "vector": vector,
            "filter": filter,
            "limit": limit,
            "with_payload": True,
            "with_vector": False,
        }

    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        return {"vectors": {"size": vector_size, "distance": distance}}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_scroll_content(self, raw_response: dict) -> list[dict]:
        return (raw_response.get("result") or {}).get("points", [])

    def extract_next_page_offset(self, raw_response: dict) -> str | int | None:
        return (raw_response.get("result") or {}).get("next_page_offset")

    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for point in raw_response.get("result") or []:
            payload = point.get("payload") or {}
            text = payload.get("chunk_text")
            if not text:
                continue
            hits.append(SearchHit(
                document_ref=str(payload.get("document_ref", "")),
                display_name=str(payload.get("display_name") or payload.get("document_ref") or ""),
                chunk_index=int(payload.get("chunk_index", 0)),
                chunk_text=text,
                score=float(point.get("score", 0.0)),
                uri=payload.get("uri"),
            ))
        return hits
