"""
Result and API response models for SQLBot.

Pipeline components exchange these models (RetrievedDoc, SqlCandidate,
ExecutionOutcome, AnalysisResult); the API layer returns them or wraps
them in response envelopes.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base_enums import ChartType, Dialect, DocumentKind, ExecutionErrorKind, PipelineState, SyncStatus
from .entities import ChatMessage, DataSource


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Health status", examples=["healthy", "degraded"])
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Application version")
    vector_store_status: str = Field(..., description="Vector store status")
    llm_service_status: str = Field(..., description="LLM client status")
    embedding_service_status: str = Field(..., description="Embedding client status")
    llm_config_version: int = Field(..., description="Version of the active LLM config snapshot")


class ErrorResponse(BaseModel):
    """Response model for error responses."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
    trace_id: Optional[str] = Field(
        default=None,
        description="Trace ID for debugging"
    )
    timestamp: datetime = Field(..., description="Error timestamp")


# -------------------------
# Pipeline Results
# -------------------------

class RetrievedDoc(BaseModel):
    """A grounding snippet returned by similarity search."""

    id: Optional[int] = Field(default=None, description="Vector row id")
    content: str = Field(..., description="Document content text")
    kind: DocumentKind = Field(..., description="schema or example")
    similarity: float = Field(..., ge=-1.0, le=1.0, description="1 - cosine distance")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Document metadata")


class SqlCandidate(BaseModel):
    """
    Output of one generation attempt.

    success is derived from sql: a candidate succeeds iff a non-empty SQL
    string was recovered. It has not been validated yet.
    """

    sql: Optional[str] = Field(default=None, description="Recovered SQL, if any")
    explanation: Optional[str] = Field(default=None, description="Model's brief or refusal message")
    success: bool = Field(default=False)

    @model_validator(mode="after")
    def _success_matches_sql(self) -> Self:
        has_sql = bool(self.sql and self.sql.strip())
        if self.success != has_sql:
            raise ValueError("success must be True exactly when sql is non-empty")
        return self

    @classmethod
    def of(cls, sql: Optional[str], explanation: Optional[str] = None) -> "SqlCandidate":
        sql = sql.strip() if sql and sql.strip() else None
        return cls(sql=sql, explanation=explanation, success=sql is not None)


class ExecutionOutcome(BaseModel):
    """Result of running SQL against a target data source."""

    success: bool
    sql: str = Field(..., description="The SQL that was executed (echoed)")
    columns: List[str] = Field(default_factory=list, description="Column names in declared order")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="Row maps in result order")
    row_count: int = 0
    error_message: Optional[str] = None
    error_kind: Optional[ExecutionErrorKind] = None

    @model_validator(mode="after")
    def _shape_is_consistent(self) -> Self:
        if self.row_count != len(self.rows):
            raise ValueError("row_count must equal len(rows)")
        width = len(self.columns)
        for row in self.rows:
            if len(row) != width:
                raise ValueError("every row must have exactly one key per column")
        if not self.success and not self.error_message:
            raise ValueError("a failed outcome needs an error message")
        return self

    @classmethod
    def succeeded(cls, sql: str, columns: List[str], rows: List[Dict[str, Any]]) -> "ExecutionOutcome":
        return cls(success=True, sql=sql, columns=columns, rows=rows, row_count=len(rows))

    @classmethod
    def failed(cls, sql: str, kind: ExecutionErrorKind, message: str) -> "ExecutionOutcome":
        return cls(success=False, sql=sql, error_kind=kind, error_message=message)


class AnalysisResult(BaseModel):
    """Insight and chart suggestion for a successful result set."""

    insight: str
    chart_type: str = ChartType.TABLE.value
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None


class SyncProgress(BaseModel):
    """
    Snapshot of a schema sync job.

    Frozen: the job publishes a new snapshot for every change, so a reader
    never sees a half-updated record.
    """

    model_config = ConfigDict(frozen=True)

    data_source_id: int
    status: SyncStatus
    processed: int = 0
    total: int = 0
    current_table: Optional[str] = None
    error: Optional[str] = None
    updated_at: datetime


# -------------------------
# API Response Envelopes
# -------------------------

class ChatTurnResponse(BaseModel):
    """Response for one chat turn."""

    trace_id: str
    state: PipelineState
    attempts: int = Field(..., description="Number of generation attempts made")
    message: ChatMessage


class LLMConfigResponse(BaseModel):
    """Active LLM configuration snapshot (API key masked)."""

    version: int
    base_url: str
    default_model: str
    resolved_model: str
    model_map: Dict[str, str]
    temperature: float
    api_key_configured: bool
    backend: str


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str


class SqlLimitsResponse(BaseModel):
    """Read-only view of the SQL execution limits."""

    read_only: bool
    max_rows: int
    timeout_seconds: int
    connect_timeout_seconds: int
    max_retries: int


class DataSourceResponse(BaseModel):
    """A data source as returned by the API; the password is never echoed."""

    id: int
    name: str
    description: Optional[str] = None
    dialect: Dialect
    host: str
    port: int
    db_name: str
    username: str
    schema_synced_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_entity(cls, data_source: DataSource) -> "DataSourceResponse":
        return cls.model_validate(data_source.model_dump(exclude={"password"}))
