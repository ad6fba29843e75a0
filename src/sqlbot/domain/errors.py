"""
Exception hierarchy for SQLBot.

Every exception carries a machine-readable error_code and the HTTP status
the API answers with, so route handlers never translate errors by hand.

    4xx  InputError (ValidationError), SecurityError, BadRequestError, NotFoundError
    5xx  DatabaseError family, provider errors (LLM, embedding, vector store),
         ConfigurationError, SchemaSyncError, ServiceUnavailableError

A failed execution of user SQL is not an exception once it leaves
SqlExecutor: it becomes an unsuccessful ExecutionOutcome that the retry
loop feeds back to the model. The DatabaseError family is what the target
database layer raises before that translation.

Usage:
    raise InputError("SQL must not be empty")
    raise SecurityError("Only SELECT statements are allowed", details={"statement": "Delete"})
"""

from typing import Any, Dict, Optional


class SQLBotException(Exception):
    """
    Base exception for all SQLBot errors.

    Class attributes give the defaults; error_code and http_status can be
    overridden per instance.
    """

    error_code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        if http_status:
            self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"error_code": self.error_code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


# -------------------------
# Caller errors (4xx)
# -------------------------

class ValidationError(SQLBotException):
    error_code = "VALIDATION_ERROR"
    http_status = 422


class InputError(ValidationError):
    """
    Blank SQL or question, unknown model alias, invalid LLM settings.

    Never retried: the same input fails the same way.
    """

    error_code = "INPUT_ERROR"


class SecurityError(SQLBotException):
    """SQL outside the read-only policy. Terminal for a chat turn, never coerced into a SELECT."""

    error_code = "SECURITY_ERROR"
    http_status = 403


class BadRequestError(SQLBotException):
    """The request conflicts with current state, e.g. a schema sync is already running."""

    error_code = "BAD_REQUEST"
    http_status = 400


class NotFoundError(SQLBotException):
    error_code = "NOT_FOUND"
    http_status = 404


# -------------------------
# Server errors (5xx)
# -------------------------

class ConfigurationError(SQLBotException):
    """Prompt templates missing or malformed, unsupported dialect, unsaved data source."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


class DatabaseError(SQLBotException):
    error_code = "DATABASE_ERROR"
    http_status = 503


class DatabaseConnectionError(DatabaseError):
    """Pool creation, connect or acquire failed (refused, auth, unreachable)."""

    error_code = "DATABASE_CONNECTION_ERROR"


class DatabaseQueryError(DatabaseError):
    """The server rejected the statement: syntax, unknown column, read-only violation."""

    error_code = "DATABASE_QUERY_ERROR"
    http_status = 500


class QueryTimeoutError(DatabaseError):
    error_code = "QUERY_TIMEOUT"
    http_status = 504


class VectorStoreError(SQLBotException):
    """pgvector setup or query failure, invalid search arguments, dimension mismatch."""

    error_code = "VECTOR_STORE_ERROR"
    http_status = 503


class LLMError(SQLBotException):
    """Missing key, transport failure, HTTP error status or an empty completion."""

    error_code = "LLM_ERROR"
    http_status = 503


class EmbeddingError(SQLBotException):
    """Missing key, oversized or empty input, or a malformed provider payload."""

    error_code = "EMBEDDING_ERROR"
    http_status = 503


class SchemaSyncError(SQLBotException):
    error_code = "SCHEMA_SYNC_ERROR"
    http_status = 500


class ServiceUnavailableError(SQLBotException):
    """A long-lived client or store was not initialized at startup."""

    error_code = "SERVICE_UNAVAILABLE"
    http_status = 503
