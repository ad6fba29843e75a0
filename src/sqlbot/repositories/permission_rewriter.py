"""
Row-level permission rewriting.

Asks the LLM to inject a filter predicate into already-validated SQL.
Rewriting is best-effort: on any failure the original SQL is kept and the
fallback is logged as a policy event, so a broken rewrite never blocks the
pipeline and never lets unvalidated SQL through.
"""

from typing import Optional

from sqlbot.config import ChatConfig
from sqlbot.domain.base_enums import Dialect
from sqlbot.domain.errors import InputError, LLMError, SecurityError
from sqlbot.infrastructure.llm_client import LanguageModelClient
from sqlbot.repositories.context_assembler import dialect_name
from sqlbot.repositories.sql_validation import SqlSafetyValidator
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.prompt_loader import get_prompt
from sqlbot.utils.reply_parser import extract_sql_statement
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()


class PermissionRewriter:
    """
    Applies a row-level filter predicate to SQL through the LLM.

    The rewritten statement is re-validated; a rewrite that fails the
    read-only policy is discarded like any other failure.
    """

    def __init__(self, llm_client: LanguageModelClient, validator: SqlSafetyValidator, config: ChatConfig):
        self.llm_client = llm_client
        self.validator = validator
        self.config = config

    async def apply_permission(
        self,
        sql: str,
        dialect: Dialect,
        filter_predicate: Optional[str],
    ) -> str:
        """
        Rewrite SQL so every table read is restricted by filter_predicate.

        Args:
            sql: Validated SQL
            dialect: Target dialect named in the prompt
            filter_predicate: WHERE-clause condition; blank means no-op

        Returns:
            The rewritten SQL, or the original SQL if rewriting failed
        """
        if not filter_predicate or not filter_predicate.strip():
            return sql

        trace_id = current_trace_id()
        system_prompt, user_prompt = get_prompt("sql_permission").render(
            dialect=dialect_name(dialect),
            sql=sql,
            filter=filter_predicate.strip(),
        )

        try:
            reply = await self.llm_client.complete(
                user_prompt,
                system_prompt=system_prompt,
                temperature=self.config.permission_temperature,
            )
        except LLMError as e:
            return self._discard(sql, f"LLM call failed: {e.message}")

        rewritten = extract_sql_statement(reply)
        if not rewritten:
            return self._discard(sql, "no SQL statement found in the rewrite reply")

        try:
            self.validator.validate(rewritten, dialect)
        except (SecurityError, InputError) as e:
            return self._discard(sql, f"rewritten SQL failed validation: {e.message}")

        logger.info(
            "Permission filter applied",
            original_length=len(sql),
            rewritten_length=len(rewritten),
            trace_id=trace_id,
        )
        return rewritten

    def _discard(self, sql: str, reason: str) -> str:
        logger.warning(
            "Permission rewrite discarded, using original SQL",
            policy_event="permission_rewrite_discarded",
            reason=reason,
            trace_id=current_trace_id(),
        )
        return sql
