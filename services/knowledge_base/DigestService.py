"""Per-document retrieval digests.

A digest is a handful of keywords and a one-line summary per document. The
gate matches them against queries and the rewriter uses them as hints. The
generative model proposes one; when it fails, or leaves out the parts the
gate relies on, a digest derived from the file name and persona hint is used.
"""

import re

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import KnowledgeConfig
from shared.stores.meta.models.DocumentDigest import DocumentDigest
from services.knowledge_base.models import StructuredDigest
from services.knowledge_base.text import normalize_digest_items, normalize_name

TOPICS_MAX = 8
ENTITIES_MAX = 12
LEXICAL_ANCHORS_MAX = 12
STYLE_ANCHORS_MAX = 8
SUMMARY_MAX_CHARS = 300
PERSONA_HINT_MAX_CHARS = 500

_NAME_NOISE = re.compile(r"[^a-z0-9\s]")
_WORD_SPLIT = re.compile(r"[^a-z0-9]+")


def _name_parts(display_name: str) -> list[str]:
    cleaned = _NAME_NOISE.sub(" ", display_name.lower())
    return [part for part in cleaned.split() if len(part) >= 3][:8]


def _persona_hints(persona_hint: str | None) -> list[str]:
    words = [word for word in _WORD_SPLIT.split((persona_hint or "").lower()) if len(word) >= 5]
    return normalize_digest_items(words, 8)


def fallback_digest_fields(display_name: str, persona_hint: str | None = None) -> dict:
    """Deterministic digest content derived only from the name and persona hint."""
    name_parts = _name_parts(display_name)
    persona = _persona_hints(persona_hint)
    topics = normalize_digest_items(name_parts[:4] + persona[:3], TOPICS_MAX)
    lexical_anchors = normalize_digest_items(name_parts + persona, LEXICAL_ANCHORS_MAX)
    return {
        "topics": topics or ["general", "reference", "notes"],
        "entities": normalize_digest_items(name_parts[:6], ENTITIES_MAX),
        "lexical_anchors": lexical_anchors or ["knowledge", "document", "reference"],
        "style_anchors": normalize_digest_items(persona[:4], STYLE_ANCHORS_MAX),
        "summary": f"Lightweight digest for {display_name}."[:SUMMARY_MAX_CHARS],
    }


def build_digest_prompt(display_name: str, sample_text: str, persona_hint: str | None) -> str:
    lines = [
        "Generate a lightweight retrieval digest for one document.",
        "Output JSON only with keys:",
        "topics (3-8), entities (3-12), lexicalAnchors (3-12), styleAnchors (3-8), digestSummary (<=240 chars).",
        "",
        f"Document name: {display_name}",
    ]
    if persona_hint:
        lines.append(f"Persona hint: {persona_hint[:PERSONA_HINT_MAX_CHARS]}")
    lines.extend(["", "Document sample:", sample_text or "(unavailable)"])
    return "\n".join(lines)


class DigestService:
    """Builds document digests with a generative model and a deterministic fallback."""

    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface, config: KnowledgeConfig):
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._config = config

    async def build_digest(
        self,
        owner_id: str,
        document_ref: str,
        display_name: str,
        sample_text: str | None,
        now: int,
        blob_ref: str | None = None,
        persona_hint: str | None = None,
    ) -> DocumentDigest:
        """Build an active digest for one document. Never raises on model failure.

        Args:
            owner_id (str): Knowledge store namespace.
            document_ref (str): Chunk store identifier.
            display_name (str): Name as uploaded.
            sample_text (str | None): Extracted text; only the first
                digest_sample_char_limit characters are sent.
            now (int): Epoch ms for updated_at.
            blob_ref (str | None): Source blob, recorded on the digest.
            persona_hint (str | None): Optional owner persona text.

        Returns:
            DocumentDigest: The digest, generated or fallback.
        """
        fields = await self._generate_fields(display_name, (sample_text or "")[: self._config.digest_sample_char_limit], persona_hint)
        return DocumentDigest(
            owner_id=owner_id,
            document_ref=document_ref,
            display_name=display_name,
            normalized_name=normalize_name(display_name),
            blob_ref=blob_ref,
            status="active",
            updated_at=now,
            **fields,
        )

    async def _generate_fields(self, display_name: str, sample_text: str, persona_hint: str | None) -> dict:
        fallback = fallback_digest_fields(display_name, persona_hint)
        result = await self._llm_client.do_generate_structured(
            build_digest_prompt(display_name, sample_text, persona_hint),
            StructuredDigest,
            timeout_seconds=self._config.provider_timeout_seconds,
        )
        if not result.ok:
            self.logging.warning("Digest generation failed for '%s', using fallback: %s", display_name, result.error)
            return fallback

        parsed = result.value
        topics = normalize_digest_items(parsed.topics, TOPICS_MAX)
        lexical_anchors = normalize_digest_items(parsed.lexicalAnchors, LEXICAL_ANCHORS_MAX)
        summary = parsed.digestSummary.strip()[:SUMMARY_MAX_CHARS]
        if not topics or not lexical_anchors or not summary:
            self.logging.info("Digest for '%s' is incomplete, using fallback.", display_name)
            return fallback

        entities = normalize_digest_items(parsed.entities, ENTITIES_MAX)
        style_anchors = normalize_digest_items(parsed.styleAnchors, STYLE_ANCHORS_MAX)
        return {
            "topics": topics,
            "entities": entities or fallback["entities"],
            "lexical_anchors": lexical_anchors,
            "style_anchors": style_anchors or fallback["style_anchors"],
            "summary": summary,
        }
