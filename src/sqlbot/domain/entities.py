"""
Records owned by the collaborator stores.

These are the persistence-side models: data sources, glossary terms,
SQL examples, chat sessions/messages and stored vector documents.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field, field_validator

from .base_enums import Dialect, DocumentKind, MessageRole


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DataSource(BaseModel):
    """A target database users ask questions about."""

    id: Optional[int] = Field(default=None, description="Store-assigned identifier")
    name: str = Field(..., min_length=1, description="Display name")
    description: Optional[str] = Field(default=None, description="Free-form description")
    dialect: Dialect = Field(..., description="Database engine")
    host: str = Field(..., description="Database host")
    port: int = Field(..., gt=0, description="Database port")
    db_name: str = Field(..., description="Database name")
    username: str = Field(..., description="Login user")
    password: str = Field(default="", description="Login password")
    schema_synced_at: Optional[datetime] = Field(default=None, description="Last successful schema sync")
    created_at: datetime = Field(default_factory=utc_now)

    def connection_url(self) -> str:
        """Build a driver URL for this data source; the dialect decides the scheme."""
        credentials = f"{quote(self.username, safe='')}:{quote(self.password, safe='')}"
        return f"{self.dialect.value}://{credentials}@{self.host}:{self.port}/{self.db_name}"


class TermGlossary(BaseModel):
    """A business term; data_source_id None makes it global."""

    id: Optional[int] = None
    term: str = Field(..., min_length=1)
    definition: str = Field(..., min_length=1)
    data_source_id: Optional[int] = None


class SqlExample(BaseModel):
    """A reference question/SQL pair used as a few-shot example."""

    id: Optional[int] = None
    data_source_id: int
    question: str = Field(..., min_length=1)
    sql: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utc_now)


class ChatSession(BaseModel):
    id: Optional[int] = None
    data_source_id: int
    title: str
    created_at: datetime = Field(default_factory=utc_now)


class ChatMessage(BaseModel):
    """
    One message in a session.

    Assistant messages carry the SQL, its result and the analysis so that
    every answer (and every failure) can be audited later.
    """

    id: Optional[int] = None
    session_id: int
    role: MessageRole
    content: str
    sql_query: Optional[str] = None
    sql_result: Optional[Dict[str, Any]] = None
    insight: Optional[str] = None
    chart_type: Optional[str] = None
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    suggested_questions: List[str] = Field(default_factory=list)
    error_msg: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class VectorDocument(BaseModel):
    """A stored embedding row."""

    id: Optional[int] = None
    owner_id: int = Field(..., description="Owning data source id")
    kind: DocumentKind
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embedding: List[float]
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("embedding")
    @classmethod
    def _non_empty_embedding(cls, value: List[float]) -> List[float]:
        if not value:
            raise ValueError("embedding must not be empty")
        return value
