"""
Domain package for SQLBot.

This package contains all domain models, entities, and value objects
used throughout the application for type safety and validation.
"""

from .base_enums import (
    ChartType,
    Dialect,
    DocumentKind,
    ExecutionErrorKind,
    MessageRole,
    PipelineState,
    SyncStatus,
)
from .entities import ChatMessage, ChatSession, DataSource, SqlExample, TermGlossary, VectorDocument
from .schema_nodes import ColumnSchema, TableSchema
from .pipeline import GenerationContext, HistoryTurn, PipelineAttempt, PipelineRun
from .responses import (
    AnalysisResult,
    ErrorResponse,
    ExecutionOutcome,
    HealthResponse,
    RetrievedDoc,
    SqlCandidate,
    SyncProgress,
)

__all__ = [
    # Enums
    "ChartType",
    "Dialect",
    "DocumentKind",
    "ExecutionErrorKind",
    "MessageRole",
    "PipelineState",
    "SyncStatus",

    # Entities
    "ChatMessage",
    "ChatSession",
    "DataSource",
    "SqlExample",
    "TermGlossary",
    "VectorDocument",

    # Schema
    "ColumnSchema",
    "TableSchema",

    # Pipeline
    "GenerationContext",
    "HistoryTurn",
    "PipelineAttempt",
    "PipelineRun",

    # Results
    "AnalysisResult",
    "ErrorResponse",
    "ExecutionOutcome",
    "HealthResponse",
    "RetrievedDoc",
    "SqlCandidate",
    "SyncProgress",
]
