"""String normalization shared by ingestion, digests and gating."""

import re
import uuid

_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_name(display_name: str) -> str:
    """Trim, collapse whitespace and lower-case a display name; the dedup key."""
    return _WHITESPACE.sub(" ", display_name or "").strip().lower()


def normalize_digest_items(items: list[str], max_items: int) -> list[str]:
    """Trim, lower-case, cut to 80 chars, drop empties and duplicates, keep max_items."""
    result: list[str] = []
    for item in items:
        value = str(item).strip().lower()[:80].strip()
        if value and value not in result:
            result.append(value)
        if len(result) >= max_items:
            break
    return result


def normalize_keyword_list(items: list[str], max_items: int) -> list[str]:
    """Trim, cut to 120 chars, drop empties and duplicates, keep max_items. Case is kept."""
    result: list[str] = []
    for item in items:
        value = str(item).strip()[:120].strip()
        if value and value not in result:
            result.append(value)
        if len(result) >= max_items:
            break
    return result


def sanitize_label(value: str, max_length: int = 42, default: str = "member") -> str:
    """Lower-case slug of [a-z0-9-], at most max_length characters."""
    slug = _NON_ALNUM.sub("-", (value or "").lower()).strip("-")[:max_length].strip("-")
    return slug or default


def store_ref_for(owner_id: str) -> str:
    return f"kb-{sanitize_label(owner_id, default='owner')}"


def build_document_ref(store_ref: str, display_name: str) -> str:
    """Document identifier: "<store>/documents/<slug>-<suffix>".

    The suffix is random per call, so two ingestions of the same name never
    share a ref and cannot touch each other's chunks.
    """
    return f"{store_ref}/documents/{sanitize_label(display_name, default='document')}-{uuid.uuid4().hex[:12]}"


def collapse_for_key(text: str) -> str:
    """Case-folded text with whitespace runs collapsed; the snippet dedup key."""
    return _WHITESPACE.sub(" ", text or "").strip().casefold()
