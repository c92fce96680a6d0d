"""Unit tests for tag extraction."""

from __future__ import annotations

import json

from langchain_core.messages import AIMessage

from kb_ingest.ingestion.tags import TagExtractor, keyword_tags


def _tags_message(*tags: str) -> AIMessage:
    return AIMessage(content=json.dumps({"tags": list(tags)}))


class TestKeywordTags:
    def test_matches_in_table_order(self) -> None:
        text = "Our Docker image runs a LangChain RAG service written in Python."
        assert keyword_tags(text) == ["rag", "langchain", "python", "docker"]

    def test_no_match(self) -> None:
        assert keyword_tags("Lunch menu for Friday") == []


class TestTagExtractor:
    async def test_tags_normalised_and_capped(self, make_chat_model) -> None:
        raw = ["Vector Search", "vector search", "RAG"] + [f"extra {i}" for i in range(15)]
        model = make_chat_model(_tags_message(*raw))
        tags = await TagExtractor(model, timeout=5).extract_tags("some text")
        assert tags[:2] == ["vector-search", "rag"]
        assert len(tags) == 12
        model.bind.assert_called_once_with(response_format={"type": "json_object"})

    async def test_prompt_carries_context(self, make_chat_model) -> None:
        model = make_chat_model(_tags_message("a"))
        await TagExtractor(model, system_prompt="sys").extract_tags("body", title="Guide", heading_path=["A", "B"])
        messages = model.ainvoke.await_args.args[0]
        assert messages[0].content == "sys"
        assert "Section: A > B" in messages[1].content

    async def test_blank_text_skips_model(self, make_chat_model) -> None:
        model = make_chat_model()
        assert await TagExtractor(model).extract_tags("   ") == []
        model.ainvoke.assert_not_awaited()

    async def test_invalid_json_returns_empty(self, make_chat_model) -> None:
        model = make_chat_model(AIMessage(content="tags: a, b"))
        assert await TagExtractor(model).extract_tags("text") == []

    async def test_provider_failure_returns_empty(self, make_chat_model) -> None:
        model = make_chat_model(RuntimeError("down"))
        assert await TagExtractor(model).extract_tags("text") == []

    async def test_batch_keeps_order(self, make_chat_model) -> None:
        model = make_chat_model(_tags_message("first"), _tags_message("second"))
        result = await TagExtractor(model).extract_tags_batch(["one", "two"], title="T")
        assert sorted(result) == [["first"], ["second"]]
        assert len(result) == 2
