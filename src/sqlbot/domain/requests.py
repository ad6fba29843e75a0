"""
API request models for SQLBot.

These models define the structure for all incoming API requests,
ensuring type safety and validation at API boundaries.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from .base_enums import Dialect


class CreateSessionRequest(BaseModel):
    """Request model for opening a chat session against a data source."""

    data_source_id: int = Field(..., description="Data source the session will query", gt=0)
    title: Optional[str] = Field(
        default=None,
        description="Optional title; defaults to the configured placeholder and is "
                    "replaced by the first question",
        max_length=200,
    )


class ChatRequest(BaseModel):
    """Request model for asking a question in a session."""

    question: str = Field(
        ...,
        description="Natural language question. "
                    "Example: 'Top 5 customers by revenue'",
        min_length=1,
        max_length=4000,
    )


class DataSourceRequest(BaseModel):
    """Request model for creating or updating a data source."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    dialect: Dialect = Field(..., description="mysql or postgresql")
    host: str = Field(..., min_length=1)
    port: int = Field(..., gt=0, lt=65536)
    db_name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(default="")


class TermRequest(BaseModel):
    """Request model for a glossary term; omit data_source_id for a global term."""

    term: str = Field(..., min_length=1, max_length=200)
    definition: str = Field(..., min_length=1)
    data_source_id: Optional[int] = Field(default=None, gt=0)


class ExampleRequest(BaseModel):
    """Request model for a reference question/SQL pair."""

    data_source_id: int = Field(..., gt=0)
    question: str = Field(..., min_length=1)
    sql: str = Field(..., min_length=1)


class LLMConfigUpdateRequest(BaseModel):
    """
    Partial update of the LLM settings.

    Only fields that are set are changed; the result is published as a new
    configuration snapshot.
    """

    api_key: Optional[str] = Field(default=None, description="Provider API key")
    base_url: Optional[str] = Field(default=None, description="OpenAI-compatible base URL")
    default_model: Optional[str] = Field(default=None, description="Model alias")
    model_map: Optional[Dict[str, str]] = Field(default=None, description="Alias -> model id")
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)


class ModelSwitchRequest(BaseModel):
    """Request model for switching the active model alias."""

    alias: str = Field(..., min_length=1, description="An alias present in model_map")
