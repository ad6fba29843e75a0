"""
SQL Execution Repository.

This repository handles the final step of the pipeline: executing
validated SQL against a target data source with strict safety constraints.

Safety Features:
- Re-validation: SQL is checked by SqlSafetyValidator again before running
- Read-only transaction on the target database
- Timeout protection: configurable query timeout (default 30s)
- Row limiting: results capped at max_rows (default 1000)

Execution failures do not raise. They come back as
ExecutionOutcome(success=False) with one of three kinds (timeout,
sql_error, connection_error), each with its own user-facing message,
so the retry loop can feed the message back to the generator.

Usage:
    executor = SqlExecutor(validator, data_sources, registry, settings.sql)
    outcome = await executor.execute("SELECT name FROM customers LIMIT 5", data_source_id=7)
    if outcome.success:
        print(outcome.columns, outcome.row_count)
"""

from datetime import datetime, timezone

from sqlbot.config import SqlConfig
from sqlbot.domain.base_enums import ExecutionErrorKind
from sqlbot.domain.errors import (
    DatabaseConnectionError,
    DatabaseQueryError,
    NotFoundError,
    QueryTimeoutError,
)
from sqlbot.domain.responses import ExecutionOutcome
from sqlbot.infrastructure.target_database import TargetDatabaseRegistry
from sqlbot.repositories.sql_validation import SqlSafetyValidator
from sqlbot.repositories.stores import DataSourceStore
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()


class SqlExecutor:
    """
    Repository for SQL execution.

    Raises only for problems that retrying cannot fix: SecurityError or
    InputError from re-validation and NotFoundError for an unknown data
    source. Everything the database reports becomes a failed outcome.
    """

    def __init__(
        self,
        validator: SqlSafetyValidator,
        data_sources: DataSourceStore,
        registry: TargetDatabaseRegistry,
        config: SqlConfig,
    ):
        self.validator = validator
        self.data_sources = data_sources
        self.registry = registry
        self.config = config

    async def execute(self, sql: str, data_source_id: int) -> ExecutionOutcome:
        """
        Execute SQL against a data source.

        Args:
            sql: SQL to run (validated again here)
            data_source_id: Target data source

        Returns:
            ExecutionOutcome with ordered columns and row maps, or a typed failure

        Raises:
            SecurityError: If sql violates the read-only policy
            InputError: If sql is blank
            NotFoundError: If the data source does not exist
        """
        trace_id = current_trace_id()

        data_source = await self.data_sources.get(data_source_id)
        if data_source is None:
            raise NotFoundError(f"Data source {data_source_id} not found")

        self.validator.validate(sql, data_source.dialect)

        logger.info(
            "Executing SQL query",
            data_source_id=data_source_id,
            sql_length=len(sql),
            timeout=self.config.timeout_seconds,
            max_rows=self.config.max_rows,
            trace_id=trace_id,
        )

        start_time = datetime.now(timezone.utc)

        try:
            target = await self.registry.get(data_source)
            columns, rows = await target.run_query(
                sql,
                max_rows=self.config.max_rows,
                timeout=self.config.timeout_seconds,
            )

        except QueryTimeoutError as e:
            return self._failed(
                sql,
                ExecutionErrorKind.TIMEOUT,
                f"Query timed out (exceeded {self.config.timeout_seconds} seconds), "
                "please refine the query conditions",
                e,
            )

        except DatabaseConnectionError as e:
            return self._failed(
                sql,
                ExecutionErrorKind.CONNECTION_ERROR,
                f"Could not connect to data source: {e.message}",
                e,
            )

        except DatabaseQueryError as e:
            return self._failed(
                sql,
                ExecutionErrorKind.SQL_ERROR,
                f"SQL execution failed: {e.message}",
                e,
            )

        execution_time_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        outcome = ExecutionOutcome.succeeded(sql=sql, columns=columns, rows=rows)

        logger.info(
            "SQL execution successful",
            row_count=outcome.row_count,
            column_count=len(columns),
            execution_time_ms=round(execution_time_ms, 2),
            was_limited=outcome.row_count >= self.config.max_rows,
            trace_id=trace_id,
        )
        return outcome

    def _failed(self, sql: str, kind: ExecutionErrorKind, message: str, error: Exception) -> ExecutionOutcome:
        logger.warning(
            "SQL execution failed",
            error_kind=kind.value,
            error=str(error),
            error_type=type(error).__name__,
            trace_id=current_trace_id(),
        )
        return ExecutionOutcome.failed(sql=sql, kind=kind, message=message)
