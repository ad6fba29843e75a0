"""Unit tests for follow-up question suggestions."""

import pytest

from sqlbot.config import ChatConfig
from sqlbot.config_constants import DEFAULT_SUGGESTIONS
from sqlbot.domain.errors import LLMError
from sqlbot.repositories.suggestions import SuggestionGenerator, parse_suggestions


class TestParseSuggestions:

    def test_json_array(self):
        assert parse_suggestions('["By month?", "By region?"]') == ["By month?", "By region?"]

    def test_fenced_json_array(self):
        assert parse_suggestions('```json\n["By month?"]\n```') == ["By month?"]

    def test_list_lines(self):
        reply = "Here are some ideas:\n1. By month?\n- By region?\n* \"Top products?\""
        assert parse_suggestions(reply) == ["By month?", "By region?", "Top products?"]

    def test_defaults_when_nothing_parses(self):
        assert parse_suggestions("no idea") == list(DEFAULT_SUGGESTIONS)

    def test_empty_array_falls_back(self):
        assert parse_suggestions("[]") == list(DEFAULT_SUGGESTIONS)


class TestSuggestionGenerator:

    @pytest.mark.asyncio
    async def test_capped_at_max_suggestions(self, fake_llm_factory):
        llm = fake_llm_factory(['["a?", "b?", "c?", "d?"]'])
        generator = SuggestionGenerator(llm, ChatConfig(max_suggestions=2))

        assert await generator.suggest("revenue by customer", "SELECT ...") == ["a?", "b?"]
        assert "2 short questions" in llm.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_missing_sql_placeholder(self, fake_llm_factory, chat_config):
        llm = fake_llm_factory(['["a?"]'])
        await SuggestionGenerator(llm, chat_config).suggest("q", None)
        assert "(no SQL)" in llm.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_llm_error_propagates(self, fake_llm_factory, chat_config):
        generator = SuggestionGenerator(fake_llm_factory([LLMError("down")]), chat_config)
        with pytest.raises(LLMError):
            await generator.suggest("q", "SELECT 1")
