"""
Unit tests for ChatService.

The retry loop is replaced with a scripted orchestrator so each terminal
state can be driven directly; analysis and suggestions use the fake LLM.
"""

import pytest

from sqlbot.domain.base_enums import ExecutionErrorKind, MessageRole, PipelineState
from sqlbot.domain.errors import InputError, LLMError, NotFoundError
from sqlbot.domain.pipeline import PipelineRun
from sqlbot.domain.responses import ExecutionOutcome
from sqlbot.repositories.result_analysis import ResultAnalyzer
from sqlbot.repositories.stores import InMemoryChatMessageStore, InMemoryChatSessionStore
from sqlbot.repositories.suggestions import SuggestionGenerator
from sqlbot.services.chat_service import SUCCESS_FALLBACK_MESSAGE, ChatService
from sqlbot.services.retry_orchestrator import UNABLE_TO_GENERATE_MESSAGE


class ScriptedOrchestrator:
    """Finishes every run in a preset terminal state and records its inputs."""

    def __init__(self, state=PipelineState.SUCCEEDED, sql="SELECT name FROM customers", outcome=None,
                 explanation="Customers by name.", error_message=None):
        self.state = state
        self.sql = sql
        self.outcome = outcome
        self.explanation = explanation
        self.error_message = error_message
        self.calls = []

    async def run(self, question, data_source, history, filter_predicate=None):
        self.calls.append({"question": question, "history": list(history), "filter": filter_predicate})
        run = PipelineRun(question=question, data_source_id=data_source.id, max_retries=3)
        run.state = self.state
        run.transitions.append(self.state)
        run.sql = self.sql
        run.explanation = self.explanation
        run.outcome = self.outcome
        run.error_message = self.error_message
        return run


def _outcome():
    return ExecutionOutcome.succeeded(
        "SELECT name FROM customers", ["name"], [{"name": "acme"}, {"name": "globex"}]
    )


@pytest.fixture
def chat_factory(data_source_store, chat_config, fake_llm_factory):
    def _build(orchestrator, llm_replies=('{"insight": "Two customers.", "chartType": "table"}', '["By region?"]'),
               config=None):
        llm = fake_llm_factory(list(llm_replies))
        config = config or chat_config
        service = ChatService(
            sessions=InMemoryChatSessionStore(),
            messages=InMemoryChatMessageStore(),
            data_sources=data_source_store,
            orchestrator=orchestrator,
            analyzer=ResultAnalyzer(llm, config),
            suggester=SuggestionGenerator(llm, config),
            config=config,
        )
        return service
    return _build


class TestSessions:

    @pytest.mark.asyncio
    async def test_create_uses_default_title(self, chat_factory, chat_config, saved_data_source):
        service = chat_factory(ScriptedOrchestrator())

        session = await service.create_session(saved_data_source.id)

        assert session.id == 1
        assert session.title == chat_config.default_session_title

    @pytest.mark.asyncio
    async def test_create_for_unknown_data_source(self, chat_factory):
        with pytest.raises(NotFoundError):
            await chat_factory(ScriptedOrchestrator()).create_session(99)

    @pytest.mark.asyncio
    async def test_delete_removes_messages(self, chat_factory, saved_data_source):
        service = chat_factory(ScriptedOrchestrator())
        session = await service.create_session(saved_data_source.id)
        await service.chat(session.id, "list customers")

        await service.delete_session(session.id)

        assert await service.list_sessions() == []
        with pytest.raises(NotFoundError):
            await service.get_messages(session.id)


class TestChatTurn:

    @pytest.mark.asyncio
    async def test_success_stores_enriched_answer(self, chat_factory, saved_data_source):
        service = chat_factory(ScriptedOrchestrator(outcome=_outcome()))
        session = await service.create_session(saved_data_source.id)

        turn = await service.chat(session.id, "  list customers  ")

        assert turn.state == PipelineState.SUCCEEDED
        assert turn.trace_id
        answer = turn.message
        assert answer.role == MessageRole.ASSISTANT
        assert answer.content == "Customers by name."
        assert answer.sql_query == "SELECT name FROM customers"
        assert answer.sql_result == {"columns": ["name"], "rows": [{"name": "acme"}, {"name": "globex"}], "row_count": 2}
        assert answer.insight == "Two customers."
        assert answer.chart_type == "table"
        assert answer.suggested_questions == ["By region?"]

        messages = await service.get_messages(session.id)
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert messages[0].content == "list customers"

    @pytest.mark.asyncio
    async def test_first_question_renames_session(self, chat_factory, saved_data_source):
        service = chat_factory(ScriptedOrchestrator(outcome=_outcome()), llm_replies=("{}", "[]") * 2)
        session = await service.create_session(saved_data_source.id)

        await service.chat(session.id, "Which customers ordered the most last quarter?")
        await service.chat(session.id, "and the quarter before?")

        sessions = await service.list_sessions()
        assert sessions[0].title == "Which customers ordered the mo..."

    @pytest.mark.asyncio
    async def test_history_excludes_the_new_question(self, chat_factory, saved_data_source):
        orchestrator = ScriptedOrchestrator(outcome=_outcome())
        service = chat_factory(orchestrator, llm_replies=("{}", "[]") * 2)
        session = await service.create_session(saved_data_source.id)

        await service.chat(session.id, "first")
        await service.chat(session.id, "second")

        assert orchestrator.calls[0]["history"] == []
        second_history = orchestrator.calls[1]["history"]
        assert [(t.role, t.content) for t in second_history] == [
            (MessageRole.USER, "first"),
            (MessageRole.ASSISTANT, "Customers by name."),
        ]

    @pytest.mark.asyncio
    async def test_enrichment_failures_do_not_fail_the_turn(self, chat_factory, saved_data_source):
        service = chat_factory(
            ScriptedOrchestrator(outcome=_outcome(), explanation=None),
            llm_replies=(LLMError("down"), LLMError("down")),
        )
        session = await service.create_session(saved_data_source.id)

        turn = await service.chat(session.id, "list customers")

        assert turn.state == PipelineState.SUCCEEDED
        assert turn.message.content == SUCCESS_FALLBACK_MESSAGE
        assert turn.message.insight is None
        assert turn.message.suggested_questions == []
        assert turn.message.sql_result["row_count"] == 2

    @pytest.mark.asyncio
    async def test_exhausted_answer_carries_error_and_sql(self, chat_factory, saved_data_source):
        failed = ExecutionOutcome.failed("SELECT x FROM t", ExecutionErrorKind.SQL_ERROR, "column x missing")
        service = chat_factory(ScriptedOrchestrator(
            state=PipelineState.EXHAUSTED_FAILURE,
            sql="SELECT x FROM t",
            outcome=failed,
            error_message="SQL execution failed: column x missing",
        ))
        session = await service.create_session(saved_data_source.id)

        turn = await service.chat(session.id, "x please")

        assert turn.state == PipelineState.EXHAUSTED_FAILURE
        assert turn.message.sql_query == "SELECT x FROM t"
        assert turn.message.error_msg == "SQL execution failed: column x missing"
        assert "```sql\nSELECT x FROM t\n```" in turn.message.content

    @pytest.mark.asyncio
    async def test_generation_failure_answer(self, chat_factory, saved_data_source):
        service = chat_factory(ScriptedOrchestrator(
            state=PipelineState.GENERATION_FAILURE, sql=None, explanation=None,
        ))
        session = await service.create_session(saved_data_source.id)

        turn = await service.chat(session.id, "what is love")

        assert turn.message.content == UNABLE_TO_GENERATE_MESSAGE
        assert turn.message.sql_query is None
        assert turn.message.error_msg == UNABLE_TO_GENERATE_MESSAGE

    @pytest.mark.asyncio
    async def test_security_rejection_answer(self, chat_factory, saved_data_source):
        service = chat_factory(ScriptedOrchestrator(
            state=PipelineState.SECURITY_REJECTED,
            sql="DELETE FROM orders",
            explanation=None,
            error_message="SQL rejected by security policy: DELETE is not allowed",
        ))
        session = await service.create_session(saved_data_source.id)

        turn = await service.chat(session.id, "remove all orders")

        assert turn.message.content.startswith("SQL rejected by security policy")
        assert turn.message.sql_query == "DELETE FROM orders"

    @pytest.mark.asyncio
    async def test_configured_row_filter_reaches_orchestrator(self, chat_factory, saved_data_source, chat_config):
        orchestrator = ScriptedOrchestrator(outcome=_outcome())
        config = chat_config.model_copy(update={"row_filter": "tenant_id = 7"})
        service = chat_factory(orchestrator, config=config)
        session = await service.create_session(saved_data_source.id)

        await service.chat(session.id, "list customers")

        assert orchestrator.calls[0]["filter"] == "tenant_id = 7"

    @pytest.mark.asyncio
    async def test_caller_errors(self, chat_factory, saved_data_source):
        service = chat_factory(ScriptedOrchestrator())
        session = await service.create_session(saved_data_source.id)

        with pytest.raises(InputError):
            await service.chat(session.id, "   ")
        with pytest.raises(NotFoundError):
            await service.chat(404, "list customers")
        assert await service.get_messages(session.id) == []
