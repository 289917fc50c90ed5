import asyncio

from services.knowledge_base.QueryRewriter import QueryRewriter, build_rewrite_prompt, fallback_rewrite
from services.knowledge_base.models import ContextMessage


def _history() -> list[ContextMessage]:
    return [
        ContextMessage(role="user", content="Tell me about the X200 warranty."),
        ContextMessage(role="assistant", content="It lasts two years."),
        ContextMessage(role="user", content="And for batteries?"),
    ]


def test_fallback_joins_the_last_two_user_turns() -> None:
    rewrite = fallback_rewrite("and returns?", _history())

    assert rewrite.standalone_query == "Tell me about the X200 warranty. And for batteries?"
    assert rewrite.alternates == []


def test_fallback_without_history_keeps_the_query() -> None:
    assert fallback_rewrite("hey", []).standalone_query == "hey"


def test_failed_generation_uses_fallback(helper_config, kb_config, llm_client) -> None:
    rewriter = QueryRewriter(helper_config, llm_client, kb_config)

    rewrite = asyncio.run(rewriter.rewrite("and returns?", _history(), None, []))

    assert rewrite.standalone_query == "Tell me about the X200 warranty. And for batteries?"


def test_model_rewrite_is_trimmed_and_alternates_deduplicated(helper_config, kb_config, llm_client) -> None:
    llm_client.results = [{
        "standaloneQuery": "  X200 battery warranty  ",
        "alternates": ["battery warranty X200", "battery warranty X200", " ", "X200 guarantee", "third"],
        "intent": "lookup",
        "confidence": 0.9,
    }]
    rewriter = QueryRewriter(helper_config, llm_client, kb_config)

    rewrite = asyncio.run(rewriter.rewrite("And for batteries?", _history(), "likes short answers", []))

    assert rewrite.standalone_query == "X200 battery warranty"
    assert rewrite.alternates == ["battery warranty X200", "X200 guarantee"]


def test_blank_model_rewrite_keeps_original_query(helper_config, kb_config, llm_client) -> None:
    llm_client.results = [{"standaloneQuery": "   ", "alternates": []}]
    rewriter = QueryRewriter(helper_config, llm_client, kb_config)

    rewrite = asyncio.run(rewriter.rewrite("What is the X200?", [], None, []))

    assert rewrite.standalone_query == "What is the X200?"


def test_prompt_carries_context_and_memory_hint() -> None:
    prompt = build_rewrite_prompt("And for batteries?", _history(), "m" * 800, [])

    assert "User: Tell me about the X200 warranty." in prompt
    assert "Assistant: It lasts two years." in prompt
    assert "m" * 500 in prompt
    assert "m" * 501 not in prompt
