"""Vector retrieval of grounded snippets and rendering of the evidence pack."""

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.ChunkPoint import SearchHit
from shared.exceptions.errors import ChunkStoreError, ProviderError
from shared.helper.HelperAsync import with_timeout
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig
from services.knowledge_base.EmbeddingBatcher import EmbeddingBatcher
from services.knowledge_base.models import Citation, Evidence, QueryRewrite, Snippet
from services.knowledge_base.text import collapse_for_key

NO_EVIDENCE = "NO_EVIDENCE"
EMPTY_EVIDENCE_PACK = "No grounded snippets found for this turn."


def hydrate_hits(query: str, hits: list[SearchHit]) -> Evidence:
    """Fold raw hits into deduplicated citations and snippets.

    Citations are unique by (title, uri). Snippets are unique by their
    whitespace-collapsed, case-folded text; a repeated snippet gains the
    citation of the extra document instead of appearing twice.
    """
    citations: list[Citation] = []
    citation_index: dict[tuple[str, str | None], int] = {}
    snippets: list[Snippet] = []
    snippet_index: dict[str, int] = {}

    for hit in hits:
        text = hit.chunk_text.strip()
        if not text:
            continue
        citation_key = (hit.display_name, hit.uri)
        if citation_key not in citation_index:
            citation_index[citation_key] = len(citations)
            citations.append(Citation(title=hit.display_name, uri=hit.uri))
        source = citation_index[citation_key]

        text_key = collapse_for_key(text)
        if text_key in snippet_index:
            snippet = snippets[snippet_index[text_key]]
            if source not in snippet.citation_indices:
                snippet.citation_indices = sorted([*snippet.citation_indices, source])
            continue
        snippet_index[text_key] = len(snippets)
        snippets.append(Snippet(text=text, citation_indices=[source]))

    blocks = []
    for snippet in snippets:
        labels = " ".join(f"[S{source + 1}]" for source in snippet.citation_indices)
        blocks.append(f"{labels} {snippet.text}")
    retrieval_text = "\n\n".join(blocks)
    return Evidence(
        query=query,
        citations=citations,
        snippets=snippets,
        grounded=len(snippets) > 0,
        retrieval_text=retrieval_text or NO_EVIDENCE,
    )


def build_evidence_pack(evidence: Evidence | None) -> str:
    """Render evidence as a "[Sources]" block followed by a "[Quotes]" block."""
    if evidence is None or (not evidence.citations and not evidence.snippets):
        return EMPTY_EVIDENCE_PACK

    lines: list[str] = []
    if evidence.citations:
        lines.append("[Sources]")
        for index, citation in enumerate(evidence.citations):
            ref = f" ({citation.uri})" if citation.uri else ""
            lines.append(f"Source {index + 1}: {citation.title}{ref}")
    if evidence.snippets:
        lines.append("[Quotes]")
        for index, snippet in enumerate(evidence.snippets):
            mapped = ", ".join(f"S{source + 1}" for source in snippet.citation_indices)
            label = f" [{mapped}]" if mapped else ""
            lines.append(f"Quote {index + 1}{label}: {snippet.text}")
    return "\n".join(lines)


def should_retry_with_alternate(primary: Evidence, rewrite: QueryRewrite) -> str | None:
    """The alternate query to run when the primary pass found nothing, else None."""
    if primary.grounded or not rewrite.alternates:
        return None
    alternate = rewrite.alternates[0].strip()
    if not alternate or alternate.lower() == primary.query.strip().lower():
        return None
    return alternate


class EvidenceRetriever:
    def __init__(
        self,
        helper_config: HelperConfig,
        config: KnowledgeConfig,
        batcher: EmbeddingBatcher,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._config = config
        self._batcher = batcher
        self._rag_client = rag_client

    def clamp_limit(self, limit: int | None) -> int:
        requested = limit if limit is not None else self._config.search_limit_default
        return max(1, min(requested, self._config.search_limit_max))

    async def retrieve(self, owner_id: str, query: str, limit: int | None = None) -> Evidence:
        """Search one owner's chunks.

        A blank query returns ungrounded evidence without calling the
        embedding provider.

        Raises:
            EmbeddingProviderError: If the query cannot be embedded.
            ChunkStoreError: If the vector search fails.
        """
        normalized = (query or "").strip()
        if not normalized:
            return Evidence(query=normalized)

        vector = await self._batcher.embed_query(normalized)
        try:
            hits = await with_timeout(
                self._rag_client.do_vector_search(owner_id, vector, self.clamp_limit(limit)),
                self._config.provider_timeout_seconds,
                "vector_search",
            )
        except ChunkStoreError:
            raise
        except ProviderError as exc:
            raise ChunkStoreError(str(exc)) from exc

        evidence = hydrate_hits(normalized, hits)
        self.logging.debug(
            "Retrieved %d hit(s) -> %d snippet(s) from %d source(s) for owner %s.",
            len(hits), len(evidence.snippets), len(evidence.citations), owner_id,
        )
        return evidence

    async def retrieve_two_pass(self, owner_id: str, rewrite: QueryRewrite, limit: int | None = None) -> tuple[Evidence, str | None]:
        """Primary pass with the standalone query, alternate pass only if it came back empty.

        Returns:
            tuple[Evidence, str | None]: The final evidence and the alternate
                query if the second pass ran.
        """
        primary = await self.retrieve(owner_id, rewrite.standalone_query, limit)
        alternate = should_retry_with_alternate(primary, rewrite)
        if alternate is None:
            return primary, None
        self.logging.info("Primary pass ungrounded, retrying with alternate query.")
        return await self.retrieve(owner_id, alternate, limit), alternate
