"""
FastAPI dependencies for dependency injection.

This module provides reusable dependencies that can be injected into
API route handlers following proper layered architecture:
- Services (ChatService, SchemaSyncService, KnowledgeService, ...) for business logic
- Settings for configuration
- Optional client dependencies for health checks only

Long-lived clients and stores live on app.state (created in the lifespan).
Services are cheap and are assembled per request; the chat pipeline takes
the LLM client of the configuration snapshot that is current when the
request starts.
"""

from typing import Annotated, Any

from fastapi import Depends, Request

from ..config import Settings
from ..domain.errors import ServiceUnavailableError
from ..infrastructure.database_client import DatabaseClient
from ..infrastructure.embedding_client import EmbeddingClient
from ..repositories.context_assembler import ContextAssembler
from ..repositories.permission_rewriter import PermissionRewriter
from ..repositories.result_analysis import ResultAnalyzer
from ..repositories.retrieval import RetrievalEngine
from ..repositories.schema_repository import SchemaRepository
from ..repositories.sql_execution import SqlExecutor
from ..repositories.sql_generation import SqlGenerator
from ..repositories.sql_validation import SqlSafetyValidator
from ..repositories.suggestions import SuggestionGenerator
from ..services.chat_service import ChatService
from ..services.config_service import ConfigService
from ..services.data_source_service import DataSourceService
from ..services.knowledge_service import KnowledgeService
from ..services.retry_orchestrator import RetryOrchestrator
from ..services.schema_sync_service import SchemaSyncService


def _state(request: Request, name: str) -> Any:
    """
    Read a required app.state attribute.

    Raises:
        ServiceUnavailableError: If the lifespan did not initialize it
    """
    if not hasattr(request.app.state, name):
        raise ServiceUnavailableError(f"{name} not initialized")
    return getattr(request.app.state, name)


def get_settings(request: Request) -> Settings:
    """
    Dependency to get the settings from app state.

    Usage in routes:
        @app.get("/config")
        async def get_config(settings: SettingsDep):
            return {"log_level": settings.app.log_level}
    """
    return _state(request, "settings")


# Optional dependency getters for health checks
def get_db_client_optional(request: Request) -> DatabaseClient | None:
    """Get database client if available, None otherwise (memory vector backend)."""
    return getattr(request.app.state, "db_client", None)


def get_embedding_client_optional(request: Request) -> EmbeddingClient | None:
    """Get embedding client if available, None otherwise."""
    return getattr(request.app.state, "embedding_client", None)


def get_config_service(request: Request) -> ConfigService:
    return _state(request, "config_service")


def get_chat_service(request: Request) -> ChatService:
    """
    Dependency to get a ChatService instance.

    Dependency tree:
    ChatService
      ├── RetryOrchestrator (thin orchestrator)
      │     ├── SqlGenerator → RetrievalEngine, ContextAssembler, LLM client
      │     ├── SqlSafetyValidator
      │     ├── PermissionRewriter
      │     └── SqlExecutor → TargetDatabaseRegistry
      ├── ResultAnalyzer
      └── SuggestionGenerator

    Usage in routes:
        @app.post("/api/chat/sessions/{session_id}/messages")
        async def chat(session_id: int, body: ChatRequest, chat_service: ChatServiceDep):
            return await chat_service.chat(session_id, body.question)
    """
    settings: Settings = _state(request, "settings")
    config_service: ConfigService = _state(request, "config_service")
    llm_client = config_service.client()

    retrieval = RetrievalEngine(
        embedding_client=_state(request, "embedding_client"),
        index=_state(request, "vector_index"),
        config=settings.retrieval,
    )
    validator = SqlSafetyValidator(read_only=settings.sql.read_only)

    generator = SqlGenerator(
        retrieval=retrieval,
        glossary=_state(request, "term_store"),
        assembler=ContextAssembler(history_window=settings.chat.history_window),
        llm_client=llm_client,
    )
    executor = SqlExecutor(
        validator=validator,
        data_sources=_state(request, "data_source_store"),
        registry=_state(request, "target_registry"),
        config=settings.sql,
    )
    orchestrator = RetryOrchestrator(
        generator=generator,
        validator=validator,
        executor=executor,
        rewriter=PermissionRewriter(llm_client, validator, settings.chat),
        max_retries=settings.sql.max_retries,
    )

    return ChatService(
        sessions=_state(request, "session_store"),
        messages=_state(request, "message_store"),
        data_sources=_state(request, "data_source_store"),
        orchestrator=orchestrator,
        analyzer=ResultAnalyzer(llm_client, settings.chat),
        suggester=SuggestionGenerator(llm_client, settings.chat),
        config=settings.chat,
        permission_policy=getattr(request.app.state, "permission_policy", None),
    )


def get_schema_sync_service(request: Request) -> SchemaSyncService:
    return SchemaSyncService(
        data_sources=_state(request, "data_source_store"),
        schema_repository=SchemaRepository(_state(request, "target_registry")),
        embedding_client=_state(request, "embedding_client"),
        index=_state(request, "vector_index"),
        progress_store=_state(request, "sync_progress"),
        tasks=_state(request, "sync_tasks"),
    )


def get_knowledge_service(request: Request) -> KnowledgeService:
    return KnowledgeService(
        terms=_state(request, "term_store"),
        examples=_state(request, "example_store"),
        data_sources=_state(request, "data_source_store"),
        embedding_client=_state(request, "embedding_client"),
        index=_state(request, "vector_index"),
    )


def get_data_source_service(request: Request) -> DataSourceService:
    return DataSourceService(
        data_sources=_state(request, "data_source_store"),
        registry=_state(request, "target_registry"),
        index=_state(request, "vector_index"),
    )


# Type aliases for cleaner dependency injection
# Service dependencies (used in API routes)
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]
SchemaSyncServiceDep = Annotated[SchemaSyncService, Depends(get_schema_sync_service)]
KnowledgeServiceDep = Annotated[KnowledgeService, Depends(get_knowledge_service)]
DataSourceServiceDep = Annotated[DataSourceService, Depends(get_data_source_service)]
ConfigServiceDep = Annotated[ConfigService, Depends(get_config_service)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

# Optional client dependencies (used in health checks)
OptionalDatabaseClientDep = Annotated[DatabaseClient | None, Depends(get_db_client_optional)]
OptionalEmbeddingClientDep = Annotated[EmbeddingClient | None, Depends(get_embedding_client_optional)]
