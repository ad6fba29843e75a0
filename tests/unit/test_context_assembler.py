"""
Unit tests for prompt context assembly and SQL generation.

Covers:
- ContextAssembler placeholders, history window and retry notes
- Prompt template loading/rendering
- SqlGenerator retrieval degradation and reply handling
"""

import pytest

from sqlbot.config import RetrievalConfig
from sqlbot.config_constants import (
    EXAMPLES_DISABLED_PLACEHOLDER,
    NO_EXAMPLES_PLACEHOLDER,
    NO_GLOSSARY_PLACEHOLDER,
    NO_HISTORY_PLACEHOLDER,
    NO_SCHEMA_PLACEHOLDER,
    SCHEMA_DISABLED_PLACEHOLDER,
    SCHEMA_DOC_SEPARATOR,
)
from sqlbot.domain.base_enums import Dialect, DocumentKind, MessageRole
from sqlbot.domain.entities import TermGlossary
from sqlbot.domain.errors import ConfigurationError, EmbeddingError, LLMError
from sqlbot.domain.pipeline import HistoryTurn
from sqlbot.domain.responses import RetrievedDoc
from sqlbot.repositories.context_assembler import ContextAssembler
from sqlbot.repositories.retrieval import RetrievalEngine
from sqlbot.repositories.sql_generation import SqlGenerator
from sqlbot.utils.prompt_loader import get_prompt, parse_templates


def _schema_doc(content: str) -> RetrievedDoc:
    return RetrievedDoc(content=content, kind=DocumentKind.SCHEMA, similarity=0.9)


def _example_doc(question: str, sql: str) -> RetrievedDoc:
    return RetrievedDoc(content=question, kind=DocumentKind.EXAMPLE, similarity=0.8, metadata={"sql": sql})


class TestContextSections:

    def test_schema_docs_joined_with_separator(self):
        assembler = ContextAssembler()
        text = assembler.schema_context([_schema_doc("Table: a"), _schema_doc("Table: b")])
        assert text == "Table: a" + SCHEMA_DOC_SEPARATOR + "Table: b"

    def test_schema_placeholders(self):
        assembler = ContextAssembler()
        assert assembler.schema_context([]) == NO_SCHEMA_PLACEHOLDER
        assert assembler.schema_context(None) == SCHEMA_DISABLED_PLACEHOLDER

    def test_examples_rendered_as_pairs(self):
        assembler = ContextAssembler()
        text = assembler.examples_context([
            _example_doc("How many orders?", "SELECT count(*) FROM orders"),
            _example_doc("List customers", "SELECT name FROM customers"),
        ])
        assert text == (
            "Q: How many orders?\nSQL: SELECT count(*) FROM orders\n\n"
            "Q: List customers\nSQL: SELECT name FROM customers"
        )

    def test_example_placeholders(self):
        assembler = ContextAssembler()
        assert assembler.examples_context([]) == NO_EXAMPLES_PLACEHOLDER
        assert assembler.examples_context(None) == EXAMPLES_DISABLED_PLACEHOLDER

    def test_glossary(self):
        assembler = ContextAssembler()
        terms = [TermGlossary(term="GMV", definition="gross merchandise value")]
        assert assembler.glossary_context(terms) == "- GMV: gross merchandise value"
        assert assembler.glossary_context([]) == NO_GLOSSARY_PLACEHOLDER


class TestHistory:

    def test_empty_history_placeholder(self):
        assert ContextAssembler().history_context([]) == NO_HISTORY_PLACEHOLDER

    def test_window_keeps_latest_turns_oldest_first(self):
        history = [HistoryTurn(MessageRole.USER, f"q{i}") for i in range(5)]
        text = ContextAssembler(history_window=2).history_context(history)
        assert text == "User: q3\nUser: q4"

    def test_system_notes_survive_the_window(self):
        history = [
            HistoryTurn(MessageRole.USER, "old question"),
            HistoryTurn(MessageRole.ASSISTANT, "old answer"),
            HistoryTurn(MessageRole.SYSTEM, "[System Error]: first"),
            HistoryTurn(MessageRole.SYSTEM, "[System Error]: second"),
        ]
        text = ContextAssembler(history_window=1).history_context(history)
        assert text == "Assistant: old answer\n\n[System Error]: first\n\n[System Error]: second"

    def test_notes_without_conversation(self):
        history = [HistoryTurn(MessageRole.SYSTEM, "[System Error]: boom")]
        text = ContextAssembler().history_context(history)
        assert text == NO_HISTORY_PLACEHOLDER + "\n\n[System Error]: boom"


class TestPrompt:

    def test_prompt_is_deterministic(self):
        assembler = ContextAssembler()
        context = assembler.assemble("top customers", [_schema_doc("Table: customers")], [], [])

        first = assembler.build_prompt(context, Dialect.MYSQL)
        second = assembler.build_prompt(context, Dialect.MYSQL)

        assert first == second
        system_prompt, user_prompt = first
        assert "MySQL" in system_prompt
        assert "Table: customers" in user_prompt
        assert user_prompt.endswith("top customers")

    def test_missing_placeholder_value(self):
        with pytest.raises(ConfigurationError, match="placeholder"):
            get_prompt("suggest_questions").render(question="q")

    def test_required_prompts_checked(self):
        with pytest.raises(ConfigurationError, match="sql_permission"):
            parse_templates({"sql_generate": {"system": "s", "user": "u"}})

    def test_non_mapping_file(self):
        with pytest.raises(ConfigurationError):
            parse_templates(["not", "a", "mapping"])


class TestSqlGenerator:

    @pytest.mark.asyncio
    async def test_retrieval_failure_degrades_to_placeholders(
        self, vector_index, glossary_store, retrieval_config, fake_llm_factory, fake_embeddings_factory,
    ):
        embeddings = fake_embeddings_factory(error=EmbeddingError("provider down"))
        llm = fake_llm_factory(['{"success": true, "sql": "SELECT 1", "brief": "one"}'])
        generator = SqlGenerator(RetrievalEngine(embeddings, vector_index, retrieval_config),
                                 glossary_store, ContextAssembler(), llm)

        candidate = await generator.generate("anything", data_source_id=1)

        assert candidate.success
        assert candidate.sql == "SELECT 1"
        assert NO_SCHEMA_PLACEHOLDER in llm.calls[0]["user"]
        assert NO_EXAMPLES_PLACEHOLDER in llm.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_disabled_retrieval_skips_embedding(
        self, vector_index, glossary_store, fake_llm_factory, fake_embeddings_factory,
    ):
        embeddings = fake_embeddings_factory()
        llm = fake_llm_factory(["```sql\nSELECT 1\n```"])
        retrieval = RetrievalEngine(embeddings, vector_index, RetrievalConfig(enabled=False))
        generator = SqlGenerator(retrieval, glossary_store, ContextAssembler(), llm)

        candidate = await generator.generate("anything", data_source_id=1)

        assert candidate.sql == "SELECT 1"
        assert embeddings.batches == []
        assert SCHEMA_DISABLED_PLACEHOLDER in llm.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_glossary_terms_reach_the_prompt(
        self, vector_index, glossary_store, retrieval_config, fake_llm_factory, fake_embeddings_factory,
    ):
        await glossary_store.save(TermGlossary(term="GMV", definition="sum of order totals", data_source_id=1))
        await glossary_store.save(TermGlossary(term="Churn", definition="lost customers", data_source_id=2))
        await glossary_store.save(TermGlossary(term="FY", definition="fiscal year"))
        llm = fake_llm_factory(["SELECT 1"])
        generator = SqlGenerator(RetrievalEngine(fake_embeddings_factory(), vector_index, retrieval_config),
                                 glossary_store, ContextAssembler(), llm)

        await generator.generate("GMV this FY", data_source_id=1)

        prompt = llm.calls[0]["user"]
        assert "- GMV: sum of order totals" in prompt
        assert "- FY: fiscal year" in prompt
        assert "Churn" not in prompt

    @pytest.mark.asyncio
    async def test_refusal_is_unsuccessful_candidate(
        self, vector_index, glossary_store, retrieval_config, fake_llm_factory, fake_embeddings_factory,
    ):
        llm = fake_llm_factory(['{"success": false, "message": "No weather data"}'])
        generator = SqlGenerator(RetrievalEngine(fake_embeddings_factory(), vector_index, retrieval_config),
                                 glossary_store, ContextAssembler(), llm)

        candidate = await generator.generate("weather?", data_source_id=1)

        assert not candidate.success
        assert candidate.sql is None
        assert candidate.explanation == "No weather data"

    @pytest.mark.asyncio
    async def test_llm_error_propagates(
        self, vector_index, glossary_store, retrieval_config, fake_llm_factory, fake_embeddings_factory,
    ):
        llm = fake_llm_factory([LLMError("timeout")])
        generator = SqlGenerator(RetrievalEngine(fake_embeddings_factory(), vector_index, retrieval_config),
                                 glossary_store, ContextAssembler(), llm)

        with pytest.raises(LLMError):
            await generator.generate("anything", data_source_id=1)
