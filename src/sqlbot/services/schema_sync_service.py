"""
Schema Sync Service for background schema indexing.

Extracts a data source's tables, embeds one document per table and
replaces the data source's schema documents in the vector index. The job
runs as an asyncio task; callers poll its progress.

Progress flow (SyncProgress.status):
    extracting -> embedding -> done
    any step   -> error

Usage:
    service = SchemaSyncService(data_sources, schema_repo, embedding_client, index, progress_store)
    progress = await service.start_sync(data_source_id=7)
    ...
    progress = service.get_progress(7)
"""

import asyncio
import threading
from typing import Dict, List, Optional, Set

from sqlbot.config_constants import EMBEDDING_BATCH_LIMIT
from sqlbot.domain.base_enums import DocumentKind, SyncStatus
from sqlbot.domain.entities import DataSource, VectorDocument, utc_now
from sqlbot.domain.errors import BadRequestError, NotFoundError, SQLBotException
from sqlbot.domain.responses import SyncProgress
from sqlbot.infrastructure.embedding_client import EmbeddingClient
from sqlbot.repositories.schema_repository import SchemaRepository
from sqlbot.repositories.stores import DataSourceStore
from sqlbot.repositories.vector_repository import VectorIndex
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.text_utils import chunked
from sqlbot.utils.tracing import current_trace_id, trace_scope

logger = get_module_logger()


class SyncProgressStore:
    """
    Latest SyncProgress per data source.

    Written by the sync job and read by pollers; get and put are atomic,
    and snapshots are frozen, so a reader never sees a partial update.
    """

    def __init__(self) -> None:
        self._progress: Dict[int, SyncProgress] = {}
        self._lock = threading.Lock()

    def get(self, data_source_id: int) -> Optional[SyncProgress]:
        with self._lock:
            return self._progress.get(data_source_id)

    def put(self, progress: SyncProgress) -> None:
        with self._lock:
            self._progress[progress.data_source_id] = progress

    def update(self, data_source_id: int, **changes) -> SyncProgress:
        """Publish a copy of the current snapshot with `changes` applied."""
        with self._lock:
            current = self._progress.get(data_source_id)
            if current is None:
                current = SyncProgress(
                    data_source_id=data_source_id,
                    status=SyncStatus.EXTRACTING,
                    updated_at=utc_now(),
                )
            progress = current.model_copy(update={**changes, "updated_at": utc_now()})
            self._progress[data_source_id] = progress
            return progress


class SchemaSyncService:
    """
    Service for schema synchronization jobs.

    At most one job runs per data source. Task references are kept until
    the task finishes so it is not garbage collected mid-run.
    """

    def __init__(
        self,
        data_sources: DataSourceStore,
        schema_repository: SchemaRepository,
        embedding_client: EmbeddingClient,
        index: VectorIndex,
        progress_store: SyncProgressStore,
        tasks: Optional[Set[asyncio.Task]] = None,
    ):
        self.data_sources = data_sources
        self.schema_repo = schema_repository
        self.embedding_client = embedding_client
        self.index = index
        self.progress_store = progress_store
        self._tasks: Set[asyncio.Task] = tasks if tasks is not None else set()

    async def start_sync(self, data_source_id: int) -> SyncProgress:
        """
        Start a background sync and return its initial progress.

        Raises:
            NotFoundError: If the data source does not exist
            BadRequestError: If a sync for the data source is already running
        """
        data_source = await self.data_sources.get(data_source_id)
        if data_source is None:
            raise NotFoundError(f"Data source {data_source_id} not found")

        current = self.progress_store.get(data_source_id)
        if current is not None and current.status in (SyncStatus.EXTRACTING, SyncStatus.EMBEDDING):
            raise BadRequestError(
                f"Schema sync already running for data source {data_source_id}",
                details={"status": current.status.value},
            )

        progress = SyncProgress(
            data_source_id=data_source_id,
            status=SyncStatus.EXTRACTING,
            updated_at=utc_now(),
        )
        self.progress_store.put(progress)

        logger.info(
            "Schema sync scheduled",
            data_source_id=data_source_id,
            trace_id=current_trace_id(),
        )

        task = asyncio.create_task(self._run_job(data_source_id, data_source))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return progress

    def get_progress(self, data_source_id: int) -> SyncProgress:
        """
        Raises:
            NotFoundError: If no sync was ever started for the data source
        """
        progress = self.progress_store.get(data_source_id)
        if progress is None:
            raise NotFoundError(f"No schema sync recorded for data source {data_source_id}")
        return progress

    async def wait_for_all(self) -> None:
        """Wait until every running sync job has finished."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Job
    # =========================================================================

    async def _run_job(self, data_source_id: int, data_source: DataSource) -> None:
        with trace_scope() as trace_id:
            logger.info("Schema sync started", data_source_id=data_source_id, trace_id=trace_id)
            try:
                documents = await self._build_documents(data_source_id, data_source)
                await self.index.replace_documents(data_source_id, DocumentKind.SCHEMA, documents)
                await self.data_sources.mark_synced(data_source_id)

            except Exception as e:
                message = e.message if isinstance(e, SQLBotException) else str(e)
                self.progress_store.update(
                    data_source_id,
                    status=SyncStatus.ERROR,
                    error=message or type(e).__name__,
                    current_table=None,
                )
                logger.error(
                    "Schema sync failed",
                    data_source_id=data_source_id,
                    error=message,
                    error_type=type(e).__name__,
                    trace_id=trace_id,
                    exc_info=not isinstance(e, SQLBotException),
                )
                return

            self.progress_store.update(data_source_id, status=SyncStatus.DONE, current_table=None)
            logger.info(
                "Schema sync completed",
                data_source_id=data_source_id,
                document_count=len(documents),
                trace_id=trace_id,
            )

    async def _build_documents(self, data_source_id: int, data_source: DataSource) -> List[VectorDocument]:
        def on_table(table_name: str) -> None:
            self.progress_store.update(data_source_id, current_table=table_name)

        tables = await self.schema_repo.extract_tables(data_source, on_table=on_table)
        texts = [table.to_document_text() for table in tables]

        self.progress_store.update(
            data_source_id,
            status=SyncStatus.EMBEDDING,
            processed=0,
            total=len(tables),
        )

        vectors: List[List[float]] = []
        for batch in chunked(texts, EMBEDDING_BATCH_LIMIT):
            vectors.extend(await self.embedding_client.embed_batch(batch))
            self.progress_store.update(
                data_source_id,
                processed=len(vectors),
                current_table=tables[len(vectors) - 1].full_name,
            )

        return [
            VectorDocument(
                owner_id=data_source_id,
                kind=DocumentKind.SCHEMA,
                content=text,
                metadata={"table_name": table.full_name},
                embedding=vector,
            )
            for table, text, vector in zip(tables, texts, vectors)
        ]
