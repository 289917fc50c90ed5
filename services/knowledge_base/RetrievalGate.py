"""Decides per chat turn whether the knowledge base should be searched at all."""

import re

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig
from shared.stores.meta.models.DocumentDigest import DocumentDigest
from services.knowledge_base.models import ContextMessage, GateDecision, StructuredGate
from services.knowledge_base.text import normalize_keyword_list

EXPLICIT_KB_PHRASES = ("document", "pdf", "according to", "knowledge base", "from the file", "in your files")
ANAPHORA_CUES = ("it", "that", "this", "what does it mean", "what about that", "and this")
MAX_DIGEST_SIGNALS = 12
DIGEST_HINT_LIMIT = 6

# whole words only, so "with" or "thistle" do not count as cues
_ANAPHORA_PATTERNS = [re.compile(rf"\b{re.escape(cue)}\b") for cue in ANAPHORA_CUES]


def collect_digest_signals(standalone_query: str, digests: list[DocumentDigest]) -> list[str]:
    """Digest terms of at least 3 characters contained in the standalone query."""
    query = standalone_query.lower()
    matches = [
        term for digest in digests for term in digest.signal_terms()
        if len(term.strip()) >= 3 and term.strip().lower() in query
    ]
    return normalize_keyword_list(matches, MAX_DIGEST_SIGNALS)


def digest_gate_hints(digests: list[DocumentDigest]) -> list[str]:
    hints: list[str] = []
    for digest in digests[:DIGEST_HINT_LIMIT]:
        hints.extend([digest.display_name, *digest.topics[:2], *digest.entities[:2]])
    return hints


def build_gate_prompt(standalone_query: str, digests: list[DocumentDigest]) -> str:
    hints = digest_gate_hints(digests)
    return "\n".join([
        "Decide whether the following user question likely needs the private knowledge base documents to answer well.",
        'Return JSON only: {"useKnowledgeBase":true|false,"reason":"short-string"}',
        "",
        f"Question: {standalone_query}",
        f"Document hints: {', '.join(hints) or 'none'}",
    ])


class RetrievalGate:
    """Ordered decision tree; the first matching rule decides.

    1. no documents                      -> skip   ("no-docs")
    2. explicit knowledge base phrasing  -> search ("explicit-kb-request")
    3. digest term in standalone query   -> search ("digest-overlap")
    4. anaphora cue with prior history   -> search ("follow-up-anaphora")
    5. generative classifier             -> its verdict, or skip on failure
    """

    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface, config: KnowledgeConfig):
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._config = config

    async def decide(
        self,
        query: str,
        standalone_query: str,
        context_history: list[ContextMessage],
        digests: list[DocumentDigest],
        has_docs: bool,
    ) -> GateDecision:
        """Return the gate decision for one turn. Never raises."""
        if not has_docs:
            return GateDecision(use_knowledge_base=False, reason="no-docs")

        combined = f"{query} {standalone_query}".lower()
        if any(phrase in combined for phrase in EXPLICIT_KB_PHRASES):
            return GateDecision(use_knowledge_base=True, reason="explicit-kb-request")

        signals = collect_digest_signals(standalone_query, digests)
        if signals:
            return GateDecision(use_knowledge_base=True, reason="digest-overlap", matched_digest_signals=signals)

        if context_history and any(pattern.search(combined) for pattern in _ANAPHORA_PATTERNS):
            return GateDecision(use_knowledge_base=True, reason="follow-up-anaphora")

        return await self._classify(standalone_query, digests)

    async def _classify(self, standalone_query: str, digests: list[DocumentDigest]) -> GateDecision:
        result = await self._llm_client.do_generate_structured(
            build_gate_prompt(standalone_query, digests),
            StructuredGate,
            timeout_seconds=self._config.provider_timeout_seconds,
        )
        if not result.ok:
            self.logging.warning("Knowledge gate classifier failed, not searching: %s", result.error)
            return GateDecision(use_knowledge_base=False, reason="kb-gate-fallback", mode="heuristic")
        return GateDecision(
            use_knowledge_base=bool(result.value.useKnowledgeBase),
            reason=result.value.reason.strip() or "llm-gate",
            mode="llm-gate",
        )
