"""
Retry Orchestrator - the generate -> validate -> execute control loop.

This service is a THIN ORCHESTRATOR over repositories:
1. SqlGenerator - retrieval + prompt + LLM + reply parsing
2. SqlSafetyValidator - mandatory read-only gate
3. PermissionRewriter - best-effort row-level filter
4. SqlExecutor - read-only execution under row cap and timeout

State machine (PipelineRun.state):
    GENERATING -> EXECUTING -> SUCCEEDED
                            -> RETRYING -> GENERATING      (attempt + 1 < max_retries)
                            -> EXHAUSTED_FAILURE           (otherwise)
    GENERATING -> GENERATION_FAILURE   (no usable SQL or LLM failure; never retried)
    any gate   -> SECURITY_REJECTED    (read-only policy violation; never retried)
    EXECUTING  -> EXHAUSTED_FAILURE    (data source deleted mid-turn; never retried)

Execution errors are fed back to the next attempt as a system note in the
working history, so the model can correct its SQL.
"""

from typing import List, Optional, Sequence

from sqlbot.domain.base_enums import MessageRole, PipelineState
from sqlbot.domain.entities import DataSource
from sqlbot.domain.errors import ConfigurationError, InputError, LLMError, NotFoundError, SecurityError
from sqlbot.domain.pipeline import HistoryTurn, PipelineAttempt, PipelineRun
from sqlbot.repositories.permission_rewriter import PermissionRewriter
from sqlbot.repositories.sql_execution import SqlExecutor
from sqlbot.repositories.sql_generation import SqlGenerator
from sqlbot.repositories.sql_validation import SqlSafetyValidator
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()

ERROR_NOTE_TEMPLATE = "[System Error]: previous SQL failed with: {error}\nPlease fix the SQL based on the error."

UNABLE_TO_GENERATE_MESSAGE = "Unable to generate SQL for this question."


def error_note(error: str) -> HistoryTurn:
    return HistoryTurn(role=MessageRole.SYSTEM, content=ERROR_NOTE_TEMPLATE.format(error=error))


class RetryOrchestrator:
    """
    Bounded self-correcting pipeline for one chat turn.

    At most max_retries generation attempts are made, regardless of what
    the generator returns.
    """

    def __init__(
        self,
        generator: SqlGenerator,
        validator: SqlSafetyValidator,
        executor: SqlExecutor,
        rewriter: Optional[PermissionRewriter] = None,
        max_retries: int = 3,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self.generator = generator
        self.validator = validator
        self.executor = executor
        self.rewriter = rewriter
        self.max_retries = max_retries

    async def run(
        self,
        question: str,
        data_source: DataSource,
        history: Sequence[HistoryTurn] = (),
        filter_predicate: Optional[str] = None,
    ) -> PipelineRun:
        """
        Run the loop to a terminal state.

        Args:
            question: Natural language question
            data_source: Target data source
            history: Prior conversation turns, oldest first
            filter_predicate: Row-level filter; blank disables rewriting

        Returns:
            PipelineRun in a terminal state
        """
        trace_id = current_trace_id()
        if data_source.id is None:
            raise ConfigurationError("Data source must be saved before it can be queried")

        run = PipelineRun(question=question, data_source_id=data_source.id, max_retries=self.max_retries)
        working_history: List[HistoryTurn] = list(history)

        logger.info(
            "Starting SQL pipeline",
            data_source_id=data_source.id,
            max_retries=self.max_retries,
            history_turns=len(working_history),
            permission_filter=bool(filter_predicate and filter_predicate.strip()),
            trace_id=trace_id,
        )

        for attempt_index in range(self.max_retries):
            attempt = PipelineAttempt(index=attempt_index)
            run.attempts.append(attempt)

            logger.info(
                f"SQL generation attempt {attempt_index + 1}/{self.max_retries}",
                trace_id=trace_id,
            )

            if not await self._step_generate(run, attempt, data_source, working_history):
                break

            if not await self._step_validate_and_rewrite(run, attempt, data_source, filter_predicate):
                break

            if not await self._step_execute(run, attempt, data_source):
                break

            # Execution failed
            if attempt_index + 1 < self.max_retries:
                attempt.carried_error = run.error_message
                run.move_to(PipelineState.RETRYING)
                working_history.append(error_note(run.error_message or ""))
                run.move_to(PipelineState.GENERATING)
            else:
                run.move_to(PipelineState.EXHAUSTED_FAILURE)

        logger.info(
            "SQL pipeline finished",
            state=run.state.value,
            attempts=len(run.attempts),
            trace_id=trace_id,
        )
        return run

    # =========================================================================
    # Pipeline Steps (return False when the run reached a terminal state)
    # =========================================================================

    async def _step_generate(
        self,
        run: PipelineRun,
        attempt: PipelineAttempt,
        data_source: DataSource,
        working_history: Sequence[HistoryTurn],
    ) -> bool:
        trace_id = current_trace_id()

        try:
            candidate = await self.generator.generate(
                run.question,
                run.data_source_id,
                history=working_history,
                dialect=data_source.dialect,
            )
        except LLMError as e:
            logger.error("LLM call failed during SQL generation", error=e.message, trace_id=trace_id)
            run.error_message = f"LLM service error: {e.message}"
            run.move_to(PipelineState.GENERATION_FAILURE)
            return False

        attempt.candidate = candidate
        run.explanation = candidate.explanation

        if not candidate.success:
            logger.warning(
                "LLM indicated it cannot generate SQL",
                explanation=candidate.explanation,
                trace_id=trace_id,
            )
            run.error_message = candidate.explanation or UNABLE_TO_GENERATE_MESSAGE
            run.move_to(PipelineState.GENERATION_FAILURE)
            return False

        run.sql = candidate.sql
        return True

    async def _step_validate_and_rewrite(
        self,
        run: PipelineRun,
        attempt: PipelineAttempt,
        data_source: DataSource,
        filter_predicate: Optional[str],
    ) -> bool:
        sql = run.sql or ""
        try:
            self.validator.validate(sql, data_source.dialect)
        except (SecurityError, InputError) as e:
            self._reject(run, e)
            return False

        if self.rewriter is not None:
            sql = await self.rewriter.apply_permission(sql, data_source.dialect, filter_predicate)

        attempt.executed_sql = sql
        run.sql = sql
        return True

    async def _step_execute(self, run: PipelineRun, attempt: PipelineAttempt, data_source: DataSource) -> bool:
        """Returns False on a terminal outcome, True when a failed execution may be retried."""
        run.move_to(PipelineState.EXECUTING)

        try:
            outcome = await self.executor.execute(attempt.executed_sql or "", run.data_source_id)
        except (SecurityError, InputError) as e:
            self._reject(run, e)
            return False
        except NotFoundError as e:
            # Data source deleted mid-turn; another attempt cannot succeed
            run.error_message = e.message
            run.move_to(PipelineState.EXHAUSTED_FAILURE)
            logger.warning(
                "Data source disappeared during execution, not retrying",
                error=e.message,
                trace_id=current_trace_id(),
            )
            return False

        attempt.outcome = outcome
        run.outcome = outcome

        if outcome.success:
            run.error_message = None
            run.move_to(PipelineState.SUCCEEDED)
            logger.info(
                "SQL execution succeeded",
                attempt=attempt.index,
                row_count=outcome.row_count,
                trace_id=current_trace_id(),
            )
            return False

        run.error_message = outcome.error_message
        logger.warning(
            "SQL execution failed",
            attempt=attempt.index,
            error_kind=outcome.error_kind.value if outcome.error_kind else None,
            error=outcome.error_message,
            trace_id=current_trace_id(),
        )
        return True

    def _reject(self, run: PipelineRun, error: Exception) -> None:
        message = getattr(error, "message", str(error))
        run.error_message = f"SQL rejected by security policy: {message}"
        run.move_to(PipelineState.SECURITY_REJECTED)
        logger.warning(
            "SQL rejected, not retrying",
            policy_event="security_rejected",
            reason=message,
            trace_id=current_trace_id(),
        )
