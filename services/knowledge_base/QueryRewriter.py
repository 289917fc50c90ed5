"""Rewrites a conversational turn into a standalone retrieval query."""

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig
from shared.stores.meta.models.DocumentDigest import DocumentDigest
from services.knowledge_base.models import ContextMessage, QueryRewrite, StructuredRewrite
from services.knowledge_base.text import normalize_keyword_list

CONTEXT_TURNS = 8
MEMORY_HINT_MAX_CHARS = 500
DIGEST_HINT_LIMIT = 6
MAX_ALTERNATES = 2


def format_context(context_history: list[ContextMessage]) -> str:
    return "\n".join(
        f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}"
        for message in context_history[-CONTEXT_TURNS:]
    )


def format_digest_hints(digests: list[DocumentDigest]) -> str:
    lines = []
    for digest in digests[:DIGEST_HINT_LIMIT]:
        topics = ", ".join(digest.topics[:3]) or "n/a"
        entities = ", ".join(digest.entities[:4]) or "n/a"
        lines.append(f"{digest.display_name} | topics: {topics} | entities: {entities}")
    return "\n".join(lines)


def build_rewrite_prompt(
    original_query: str,
    context_history: list[ContextMessage],
    memory_hint: str | None,
    digests: list[DocumentDigest],
) -> str:
    return "\n".join([
        "Rewrite the user question into a standalone retrieval query for document search.",
        "Resolve pronouns and ellipsis from the conversation context.",
        "Keep the query concise and specific.",
        "Return JSON only:",
        '{"standaloneQuery":"...","alternates":["..."],"intent":"...","confidence":0.0}',
        "",
        f"Original user question: {original_query}",
        "",
        "Recent conversation:",
        format_context(context_history) or "(none)",
        "",
        "Memory hint:",
        (memory_hint or "")[:MEMORY_HINT_MAX_CHARS] or "(none)",
        "",
        "Document digest hints:",
        format_digest_hints(digests) or "(none)",
    ])


def fallback_rewrite(original_query: str, context_history: list[ContextMessage]) -> QueryRewrite:
    """Join the last two user turns, or keep the original query when there are none."""
    user_turns = [message.content.strip() for message in context_history if message.role == "user"][-2:]
    return QueryRewrite(standalone_query=" ".join(user_turns).strip() or original_query, alternates=[])


class QueryRewriter:
    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface, config: KnowledgeConfig):
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._config = config

    async def rewrite(
        self,
        original_query: str,
        context_history: list[ContextMessage],
        memory_hint: str | None,
        digests: list[DocumentDigest],
    ) -> QueryRewrite:
        """Produce a standalone query plus up to two alternates. Never raises.

        Args:
            original_query (str): The user's message for this turn.
            context_history (list[ContextMessage]): Prior turns, oldest first.
            memory_hint (str | None): Conversation memory summary.
            digests (list[DocumentDigest]): Active digests of the owner.

        Returns:
            QueryRewrite: The model's rewrite, or the history-based fallback.
        """
        result = await self._llm_client.do_generate_structured(
            build_rewrite_prompt(original_query, context_history, memory_hint, digests),
            StructuredRewrite,
            timeout_seconds=self._config.provider_timeout_seconds,
        )
        if not result.ok:
            self.logging.warning("Query rewrite failed, using history fallback: %s", result.error)
            return fallback_rewrite(original_query, context_history)

        return QueryRewrite(
            standalone_query=result.value.standaloneQuery.strip() or original_query,
            alternates=normalize_keyword_list(result.value.alternates, MAX_ALTERNATES),
        )
