"""
Chat Service - sessions, messages and the per-question flow.

One chat turn:
1. Validate the question, load session and data source
2. Capture the conversation history (before the new question is stored)
3. Store the user message
4. Resolve the row-level permission predicate
5. Run the RetryOrchestrator to a terminal state
6. On success, add analysis and suggestions (best-effort)
7. Store the assistant message; every terminal state leaves a readable
   message, and the SQL whenever one was produced

Usage:
    chat_service = ChatService(sessions, messages, data_sources, orchestrator, analyzer, suggester, settings.chat)
    session = await chat_service.create_session(data_source_id=7)
    turn = await chat_service.chat(session.id, "Top 5 customers by revenue")
"""

from typing import Any, Dict, List, Optional, Protocol

from sqlbot.config import ChatConfig
from sqlbot.domain.base_enums import MessageRole, PipelineState
from sqlbot.domain.entities import ChatMessage, ChatSession, DataSource
from sqlbot.domain.errors import InputError, NotFoundError
from sqlbot.domain.pipeline import HistoryTurn, PipelineRun
from sqlbot.domain.responses import ChatTurnResponse, ExecutionOutcome
from sqlbot.repositories.result_analysis import ResultAnalyzer
from sqlbot.repositories.stores import ChatMessageStore, ChatSessionStore, DataSourceStore
from sqlbot.repositories.suggestions import SuggestionGenerator
from sqlbot.services.retry_orchestrator import UNABLE_TO_GENERATE_MESSAGE, RetryOrchestrator
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.serialization import sanitize_for_json
from sqlbot.utils.text_utils import truncate_title
from sqlbot.utils.tracing import get_trace_id

logger = get_module_logger()

SUCCESS_FALLBACK_MESSAGE = "Query executed successfully."


class PermissionPolicy(Protocol):
    """Decides the row-level filter predicate for a turn; None or blank means no filter."""

    async def predicate_for(self, session: ChatSession, data_source: DataSource) -> Optional[str]: ...


class ConfiguredRowFilter:
    """Applies the same configured predicate to every turn."""

    def __init__(self, row_filter: Optional[str]):
        self.row_filter = row_filter

    async def predicate_for(self, session: ChatSession, data_source: DataSource) -> Optional[str]:
        return self.row_filter


def _sql_block(sql: str) -> str:
    return f"```sql\n{sql}\n```"


class ChatService:
    """
    Service for chat sessions.

    A chat turn raises only for caller errors (blank question, unknown
    session or data source). Pipeline failures are answered with an
    assistant message describing them.
    """

    def __init__(
        self,
        sessions: ChatSessionStore,
        messages: ChatMessageStore,
        data_sources: DataSourceStore,
        orchestrator: RetryOrchestrator,
        analyzer: ResultAnalyzer,
        suggester: SuggestionGenerator,
        config: ChatConfig,
        permission_policy: Optional[PermissionPolicy] = None,
    ):
        self.sessions = sessions
        self.messages = messages
        self.data_sources = data_sources
        self.orchestrator = orchestrator
        self.analyzer = analyzer
        self.suggester = suggester
        self.config = config
        self.permission_policy = permission_policy or ConfiguredRowFilter(config.row_filter)

    # -------------------------
    # Sessions
    # -------------------------

    async def create_session(self, data_source_id: int, title: Optional[str] = None) -> ChatSession:
        if await self.data_sources.get(data_source_id) is None:
            raise NotFoundError(f"Data source {data_source_id} not found")

        session = await self.sessions.create(
            ChatSession(
                data_source_id=data_source_id,
                title=(title or "").strip() or self.config.default_session_title,
            )
        )
        logger.info(
            "Chat session created",
            session_id=session.id,
            data_source_id=data_source_id,
            trace_id=get_trace_id(),
        )
        return session

    async def list_sessions(self) -> List[ChatSession]:
        return await self.sessions.list()

    async def get_messages(self, session_id: int) -> List[ChatMessage]:
        await self._require_session(session_id)
        return await self.messages.list_for_session(session_id)

    async def delete_session(self, session_id: int) -> None:
        await self._require_session(session_id)
        deleted_messages = await self.messages.delete_for_session(session_id)
        await self.sessions.delete(session_id)
        logger.info(
            "Chat session deleted",
            session_id=session_id,
            deleted_messages=deleted_messages,
            trace_id=get_trace_id(),
        )

    # -------------------------
    # Chat turn
    # -------------------------

    async def chat(self, session_id: int, question: str) -> ChatTurnResponse:
        """
        Answer one question in a session.

        Raises:
            InputError: If the question is blank
            NotFoundError: If the session or its data source does not exist
        """
        trace_id = get_trace_id()
        question = (question or "").strip()
        if not question:
            raise InputError("Question must not be empty")

        session = await self._require_session(session_id)
        data_source = await self.data_sources.get(session.data_source_id)
        if data_source is None:
            raise NotFoundError(f"Data source {session.data_source_id} not found")

        history = await self._history(session_id)

        await self.messages.append(ChatMessage(session_id=session_id, role=MessageRole.USER, content=question))
        if session.title == self.config.default_session_title:
            await self.sessions.rename(session_id, truncate_title(question, self.config.title_max_chars))

        logger.info(
            "Chat turn started",
            session_id=session_id,
            data_source_id=data_source.id,
            history_turns=len(history),
            trace_id=trace_id,
        )

        filter_predicate = await self.permission_policy.predicate_for(session, data_source)
        run = await self.orchestrator.run(question, data_source, history, filter_predicate)

        assistant = await self._answer(session_id, run)
        stored = await self.messages.append(assistant)

        logger.info(
            "Chat turn completed",
            session_id=session_id,
            state=run.state.value,
            attempts=len(run.attempts),
            trace_id=trace_id,
        )
        return ChatTurnResponse(
            trace_id=trace_id,
            state=run.state,
            attempts=len(run.attempts),
            message=stored,
        )

    # -------------------------
    # Helpers
    # -------------------------

    async def _require_session(self, session_id: int) -> ChatSession:
        session = await self.sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Chat session {session_id} not found")
        return session

    async def _history(self, session_id: int) -> List[HistoryTurn]:
        stored = await self.messages.list_for_session(session_id)
        return [
            HistoryTurn(role=message.role, content=message.content)
            for message in stored
            if message.role in (MessageRole.USER, MessageRole.ASSISTANT)
        ]

    async def _answer(self, session_id: int, run: PipelineRun) -> ChatMessage:
        if run.state == PipelineState.SUCCEEDED and run.outcome is not None:
            return await self._success_message(session_id, run, run.outcome)

        if run.state == PipelineState.GENERATION_FAILURE:
            content = run.explanation or UNABLE_TO_GENERATE_MESSAGE
        elif run.state == PipelineState.EXHAUSTED_FAILURE:
            content = f"SQL execution failed: {run.error_message}\n\nGenerated SQL:\n{_sql_block(run.sql or '')}"
        else:
            content = run.error_message or "The request could not be completed."
            if run.sql:
                content += f"\n\nGenerated SQL:\n{_sql_block(run.sql)}"

        return ChatMessage(
            session_id=session_id,
            role=MessageRole.ASSISTANT,
            content=content,
            sql_query=run.sql,
            error_msg=run.error_message or content,
        )

    async def _success_message(self, session_id: int, run: PipelineRun, outcome: ExecutionOutcome) -> ChatMessage:
        sql = run.sql or outcome.sql
        result: Dict[str, Any] = sanitize_for_json(
            {"columns": outcome.columns, "rows": outcome.rows, "row_count": outcome.row_count}
        )
        message = ChatMessage(
            session_id=session_id,
            role=MessageRole.ASSISTANT,
            content=run.explanation or SUCCESS_FALLBACK_MESSAGE,
            sql_query=sql,
            sql_result=result,
        )

        # Enrichments: a failure here must not fail the turn
        try:
            analysis = await self.analyzer.analyze(run.question, sql, outcome.rows)
            message.insight = analysis.insight
            message.chart_type = analysis.chart_type
            message.x_axis = analysis.x_axis
            message.y_axis = analysis.y_axis
        except Exception as e:
            logger.error(
                "Result analysis failed, answer sent without insight",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=get_trace_id(),
                exc_info=True,
            )

        try:
            message.suggested_questions = await self.suggester.suggest(run.question, sql)
        except Exception as e:
            logger.error(
                "Suggestion generation failed, answer sent without suggestions",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=get_trace_id(),
                exc_info=True,
            )

        return message
