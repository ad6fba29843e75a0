"""
Main FastAPI application for SQLBot.

This module sets up the FastAPI application with logging, tracing and
error handling middleware, creates the long-lived clients and stores in
the lifespan, and exposes the chat, data source, knowledge and
configuration routes.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware

from .utils.logging import configure_logging, get_module_logger
from .utils.tracing import get_trace_id
from .config import get_settings
from .config_constants import VectorBackend
from .domain.entities import ChatMessage, ChatSession, SqlExample, TermGlossary
from .domain.requests import (
    ChatRequest,
    CreateSessionRequest,
    DataSourceRequest,
    ExampleRequest,
    LLMConfigUpdateRequest,
    ModelSwitchRequest,
    TermRequest,
)
from .domain.responses import (
    ChatTurnResponse,
    ConnectionTestResponse,
    DataSourceResponse,
    HealthResponse,
    LLMConfigResponse,
    SqlLimitsResponse,
    SyncProgress,
)
from .api.middleware import (
    ERROR_RESPONSES,
    logging_middleware,
    register_exception_handlers,
    trace_id_middleware,
)
from .api.dependencies import (
    ChatServiceDep,
    ConfigServiceDep,
    DataSourceServiceDep,
    KnowledgeServiceDep,
    OptionalDatabaseClientDep,
    OptionalEmbeddingClientDep,
    SchemaSyncServiceDep,
    SettingsDep,
)
from .infrastructure.database_client import DatabaseClient
from .infrastructure.embedding_client import EmbeddingClient
from .infrastructure.target_database import TargetDatabaseRegistry
from .repositories.memory_vector_index import InMemoryVectorIndex
from .repositories.stores import (
    InMemoryChatMessageStore,
    InMemoryChatSessionStore,
    InMemoryDataSourceStore,
    InMemorySqlExampleStore,
    InMemoryTermGlossaryStore,
)
from .repositories.vector_repository import PgVectorIndex
from .services.config_service import ConfigService
from .services.schema_sync_service import SyncProgressStore

APP_VERSION = "0.1.0"

configure_logging()
logger = get_module_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the long-lived clients and stores, and release them on shutdown."""
    logger.info("Starting SQLBot API server", version=APP_VERSION)

    settings = get_settings()
    app.state.settings = settings
    logger.info("Settings loaded successfully", vector_backend=settings.vector_store.backend.value)

    # A missing embedding key degrades retrieval; /health reports it
    embedding_client = EmbeddingClient(settings.embedding)
    try:
        await embedding_client.connect()
    except Exception as e:
        logger.error(f"Failed to initialize embedding client: {e}")

    # Document store
    db_client: Optional[DatabaseClient] = None
    if settings.vector_store.backend == VectorBackend.PGVECTOR:
        db_client = DatabaseClient(settings.database)
        vector_index: Union[PgVectorIndex, InMemoryVectorIndex] = PgVectorIndex(
            db_client, settings.vector_store, settings.embedding.dimension
        )
        try:
            await db_client.connect()
            await vector_index.ensure_setup()
            logger.info("Vector store ready")
        except Exception as e:
            logger.error(f"Failed to prepare vector store: {e}")
            # Retrieval falls back to placeholder context
    else:
        vector_index = InMemoryVectorIndex(settings.embedding.dimension)
        logger.warning("Using in-memory vector index, documents are lost on restart")

    app.state.db_client = db_client
    app.state.embedding_client = embedding_client
    app.state.vector_index = vector_index

    # Collaborator stores
    app.state.data_source_store = InMemoryDataSourceStore()
    app.state.term_store = InMemoryTermGlossaryStore()
    app.state.example_store = InMemorySqlExampleStore()
    app.state.session_store = InMemoryChatSessionStore()
    app.state.message_store = InMemoryChatMessageStore()

    app.state.target_registry = TargetDatabaseRegistry(settings.sql)
    app.state.config_service = ConfigService(settings.llm)
    app.state.sync_progress = SyncProgressStore()
    app.state.sync_tasks = set()

    yield

    logger.info("Shutting down SQLBot API server")

    for task in list(app.state.sync_tasks):
        task.cancel()
    if app.state.sync_tasks:
        await asyncio.gather(*app.state.sync_tasks, return_exceptions=True)

    await app.state.target_registry.close_all()
    await app.state.config_service.close()
    await embedding_client.close()
    if db_client is not None:
        await db_client.close()
        logger.info("Vector store connection closed")


app = FastAPI(
    title="SQLBot API",
    description="Natural language questions over your databases, answered with read-only SQL",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last registered = first executed
app.middleware("http")(logging_middleware)
app.middleware("http")(trace_id_middleware)

register_exception_handlers(app)


# API Routes
@app.get("/", tags=["Root"])
async def root(settings: SettingsDep) -> Dict[str, Union[str, None]]:
    """Basic API information."""
    trace_id = get_trace_id()
    return {
        "message": "SQLBot API",
        "version": APP_VERSION,
        "trace_id": trace_id,
        "log_level": settings.app.log_level.value,
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(
    db_client: OptionalDatabaseClientDep,
    embedding_client: OptionalEmbeddingClientDep,
    config_service: ConfigServiceDep,
) -> HealthResponse:
    """
    Liveness plus dependency status.

    Reports each dependency separately; any unhealthy one makes the
    overall status "degraded". Never fails itself.
    """
    trace_id = get_trace_id()
    logger.debug("Health check", trace_id=trace_id)

    # No database client means the in-memory index is in use
    vector_store_status = "healthy"
    if db_client is not None:
        db_health = await db_client.health_check()
        vector_store_status = db_health.get("status", "unknown")

    snapshot, llm_client = config_service.current()
    llm_status = "healthy" if llm_client.has_credentials() else "not_configured"

    embedding_status = "not_configured"
    if embedding_client is not None:
        embedding_status = "healthy" if embedding_client.is_connected() else "not_configured"

    statuses = (vector_store_status, llm_status, embedding_status)
    overall_status = "healthy" if all(s == "healthy" for s in statuses) else "degraded"

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=APP_VERSION,
        vector_store_status=vector_store_status,
        llm_service_status=llm_status,
        embedding_service_status=embedding_status,
        llm_config_version=snapshot.version,
    )


# -------------------------
# Chat Endpoints
# -------------------------

@app.post(
    "/api/chat/sessions",
    response_model=ChatSession,
    status_code=status.HTTP_201_CREATED,
    tags=["Chat"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 422]},
)
async def create_session(request: CreateSessionRequest, chat_service: ChatServiceDep) -> ChatSession:
    """Open a chat session against a data source."""
    return await chat_service.create_session(request.data_source_id, request.title)


@app.get("/api/chat/sessions", response_model=List[ChatSession], tags=["Chat"])
async def list_sessions(chat_service: ChatServiceDep) -> List[ChatSession]:
    """All sessions, newest first."""
    return await chat_service.list_sessions()


@app.delete(
    "/api/chat/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Chat"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404]},
)
async def delete_session(session_id: int, chat_service: ChatServiceDep) -> Response:
    await chat_service.delete_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get(
    "/api/chat/sessions/{session_id}/messages",
    response_model=List[ChatMessage],
    tags=["Chat"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404]},
)
async def get_messages(session_id: int, chat_service: ChatServiceDep) -> List[ChatMessage]:
    """Messages of a session, oldest first."""
    return await chat_service.get_messages(session_id)


@app.post(
    "/api/chat/sessions/{session_id}/messages",
    response_model=ChatTurnResponse,
    tags=["Chat"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 422, 500]},
)
async def chat(session_id: int, request: ChatRequest, chat_service: ChatServiceDep) -> ChatTurnResponse:
    """
    Ask a question in a session.

    The question goes through retrieval, SQL generation, the read-only
    gate, the row-level permission rewrite and execution, with up to
    `sql.max_retries` attempts. The assistant message describes the
    outcome; pipeline failures are answers, not HTTP errors.

    **Response Model**: `ChatTurnResponse`
    - state: succeeded, generation_failure, exhausted_failure or security_rejected
    - attempts: Number of generation attempts made
    - message: Stored assistant message (SQL, result, insight, suggestions)
    """
    return await chat_service.chat(session_id, request.question)


# -------------------------
# Data Source Endpoints
# -------------------------

@app.get("/api/datasources", response_model=List[DataSourceResponse], tags=["Data Sources"])
async def list_data_sources(data_source_service: DataSourceServiceDep) -> List[DataSourceResponse]:
    return [DataSourceResponse.from_entity(ds) for ds in await data_source_service.list()]


@app.post(
    "/api/datasources",
    response_model=DataSourceResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Data Sources"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [422]},
)
async def create_data_source(
    request: DataSourceRequest,
    data_source_service: DataSourceServiceDep,
) -> DataSourceResponse:
    return DataSourceResponse.from_entity(await data_source_service.create(request))


@app.post(
    "/api/datasources/test-connection",
    response_model=ConnectionTestResponse,
    tags=["Data Sources"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [422]},
)
async def test_unsaved_data_source(
    request: DataSourceRequest,
    data_source_service: DataSourceServiceDep,
) -> ConnectionTestResponse:
    """Try connection settings before saving them; nothing is stored."""
    return await data_source_service.test_parameters(request)


@app.get(
    "/api/datasources/{data_source_id}",
    response_model=DataSourceResponse,
    tags=["Data Sources"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404]},
)
async def get_data_source(data_source_id: int, data_source_service: DataSourceServiceDep) -> DataSourceResponse:
    return DataSourceResponse.from_entity(await data_source_service.get(data_source_id))


@app.put(
    "/api/datasources/{data_source_id}",
    response_model=DataSourceResponse,
    tags=["Data Sources"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 422]},
)
async def update_data_source(
    data_source_id: int,
    request: DataSourceRequest,
    data_source_service: DataSourceServiceDep,
) -> DataSourceResponse:
    return DataSourceResponse.from_entity(await data_source_service.update(data_source_id, request))


@app.delete(
    "/api/datasources/{data_source_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Data Sources"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404]},
)
async def delete_data_source(data_source_id: int, data_source_service: DataSourceServiceDep) -> Response:
    await data_source_service.delete(data_source_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/datasources/{data_source_id}/test",
    response_model=ConnectionTestResponse,
    tags=["Data Sources"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404]},
)
async def test_data_source(
    data_source_id: int,
    data_source_service: DataSourceServiceDep,
) -> ConnectionTestResponse:
    """Open a throwaway connection and run SELECT 1."""
    return await data_source_service.test_connection(data_source_id)


@app.post(
    "/api/datasources/{data_source_id}/sync",
    response_model=SyncProgress,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Schema Sync"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [400, 404]},
)
async def start_schema_sync(data_source_id: int, sync_service: SchemaSyncServiceDep) -> SyncProgress:
    """
    Start a background schema sync.

    Extracts tables, embeds one document per table and replaces the data
    source's schema documents. Poll the progress endpoint for status.
    """
    return await sync_service.start_sync(data_source_id)


@app.get(
    "/api/datasources/{data_source_id}/sync/progress",
    response_model=SyncProgress,
    tags=["Schema Sync"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404]},
)
async def get_sync_progress(data_source_id: int, sync_service: SchemaSyncServiceDep) -> SyncProgress:
    return sync_service.get_progress(data_source_id)


# -------------------------
# Knowledge Base Endpoints
# -------------------------

@app.get("/api/knowledge/terms", response_model=List[TermGlossary], tags=["Knowledge"])
async def list_terms(
    knowledge_service: KnowledgeServiceDep,
    data_source_id: Optional[int] = None,
) -> List[TermGlossary]:
    """All terms, or the terms visible to one data source (its own plus global)."""
    return await knowledge_service.list_terms(data_source_id)


@app.post(
    "/api/knowledge/terms",
    response_model=TermGlossary,
    status_code=status.HTTP_201_CREATED,
    tags=["Knowledge"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 422]},
)
async def create_term(request: TermRequest, knowledge_service: KnowledgeServiceDep) -> TermGlossary:
    return await knowledge_service.save_term(TermGlossary(**request.model_dump()))


@app.put(
    "/api/knowledge/terms/{term_id}",
    response_model=TermGlossary,
    tags=["Knowledge"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 422]},
)
async def update_term(term_id: int, request: TermRequest, knowledge_service: KnowledgeServiceDep) -> TermGlossary:
    return await knowledge_service.save_term(TermGlossary(id=term_id, **request.model_dump()))


@app.delete(
    "/api/knowledge/terms/{term_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Knowledge"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404]},
)
async def delete_term(term_id: int, knowledge_service: KnowledgeServiceDep) -> Response:
    await knowledge_service.delete_term(term_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/knowledge/examples", response_model=List[SqlExample], tags=["Knowledge"])
async def list_examples(
    knowledge_service: KnowledgeServiceDep,
    data_source_id: Optional[int] = None,
) -> List[SqlExample]:
    return await knowledge_service.list_examples(data_source_id)


@app.post(
    "/api/knowledge/examples",
    response_model=SqlExample,
    status_code=status.HTTP_201_CREATED,
    tags=["Knowledge"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 422, 503]},
)
async def create_example(request: ExampleRequest, knowledge_service: KnowledgeServiceDep) -> SqlExample:
    """Save a reference question/SQL pair and index its question for retrieval."""
    return await knowledge_service.save_example(SqlExample(**request.model_dump()))


@app.put(
    "/api/knowledge/examples/{example_id}",
    response_model=SqlExample,
    tags=["Knowledge"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404, 422, 503]},
)
async def update_example(
    example_id: int,
    request: ExampleRequest,
    knowledge_service: KnowledgeServiceDep,
) -> SqlExample:
    return await knowledge_service.save_example(SqlExample(id=example_id, **request.model_dump()))


@app.delete(
    "/api/knowledge/examples/{example_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Knowledge"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [404]},
)
async def delete_example(example_id: int, knowledge_service: KnowledgeServiceDep) -> Response:
    await knowledge_service.delete_example(example_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -------------------------
# LLM Configuration Endpoints
# -------------------------

@app.get("/api/config/llm", response_model=LLMConfigResponse, tags=["Configuration"])
async def get_llm_config(config_service: ConfigServiceDep) -> LLMConfigResponse:
    """Active LLM configuration snapshot; the API key is never returned."""
    return config_service.describe()


@app.get("/api/config/sql", response_model=SqlLimitsResponse, tags=["Configuration"])
async def get_sql_limits(settings: SettingsDep) -> SqlLimitsResponse:
    """SQL execution limits; changed only through the environment."""
    return SqlLimitsResponse(**settings.sql.model_dump(include=set(SqlLimitsResponse.model_fields)))


@app.put(
    "/api/config/llm",
    response_model=LLMConfigResponse,
    tags=["Configuration"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [422]},
)
async def update_llm_config(request: LLMConfigUpdateRequest, config_service: ConfigServiceDep) -> LLMConfigResponse:
    """Publish a new configuration snapshot; runs already in flight keep the old one."""
    config_service.update_llm_config(request.model_dump(exclude_none=True))
    return config_service.describe()


@app.put(
    "/api/config/llm/model",
    response_model=LLMConfigResponse,
    tags=["Configuration"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [422]},
)
async def switch_model(request: ModelSwitchRequest, config_service: ConfigServiceDep) -> LLMConfigResponse:
    config_service.switch_model(request.alias)
    return config_service.describe()


@app.post("/api/config/llm/test", response_model=ConnectionTestResponse, tags=["Configuration"])
async def test_llm_connection(
    config_service: ConfigServiceDep,
    request: Optional[LLMConfigUpdateRequest] = None,
) -> ConnectionTestResponse:
    """Test the provider with the current settings plus any overrides in the body."""
    overrides = request.model_dump(exclude_none=True) if request is not None else None
    return await config_service.test_connection(overrides)
