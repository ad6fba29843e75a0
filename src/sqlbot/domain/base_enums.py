from enum import Enum


class Dialect(str, Enum):
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"


class DocumentKind(str, Enum):
    SCHEMA = "schema"
    EXAMPLE = "example"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    # Error notes injected into the working history by the retry loop
    SYSTEM = "system"


class PipelineState(str, Enum):
    """States of one chat turn's generate -> execute loop."""
    GENERATING = "generating"
    EXECUTING = "executing"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED_FAILURE = "exhausted_failure"
    GENERATION_FAILURE = "generation_failure"
    SECURITY_REJECTED = "security_rejected"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    PipelineState.SUCCEEDED,
    PipelineState.EXHAUSTED_FAILURE,
    PipelineState.GENERATION_FAILURE,
    PipelineState.SECURITY_REJECTED,
})


class ExecutionErrorKind(str, Enum):
    TIMEOUT = "timeout"
    SQL_ERROR = "sql_error"
    CONNECTION_ERROR = "connection_error"


class SyncStatus(str, Enum):
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    DONE = "done"
    ERROR = "error"


class ChartType(str, Enum):
    TABLE = "table"
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
