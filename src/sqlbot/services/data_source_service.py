"""
Data Source Service for managing target databases.

Keeps the connection pools and the vector index consistent with the
stored records: an update or delete closes the data source's pool, and a
delete also drops its schema and example documents.
"""

from typing import List

from sqlbot.domain.entities import DataSource
from sqlbot.domain.errors import DatabaseConnectionError, NotFoundError
from sqlbot.domain.requests import DataSourceRequest
from sqlbot.domain.responses import ConnectionTestResponse
from sqlbot.infrastructure.target_database import TargetDatabaseRegistry
from sqlbot.repositories.stores import DataSourceStore
from sqlbot.repositories.vector_repository import VectorIndex
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()


class DataSourceService:
    def __init__(self, data_sources: DataSourceStore, registry: TargetDatabaseRegistry, index: VectorIndex):
        self.data_sources = data_sources
        self.registry = registry
        self.index = index

    async def list(self) -> List[DataSource]:
        return await self.data_sources.list()

    async def get(self, data_source_id: int) -> DataSource:
        data_source = await self.data_sources.get(data_source_id)
        if data_source is None:
            raise NotFoundError(f"Data source {data_source_id} not found")
        return data_source

    async def create(self, request: DataSourceRequest) -> DataSource:
        data_source = await self.data_sources.save(DataSource(**request.model_dump()))
        logger.info(
            "Data source created",
            data_source_id=data_source.id,
            dialect=data_source.dialect.value,
            host=data_source.host,
            trace_id=current_trace_id(),
        )
        return data_source

    async def update(self, data_source_id: int, request: DataSourceRequest) -> DataSource:
        """Replace the connection settings; the sync timestamp is kept."""
        existing = await self.get(data_source_id)
        updated = await self.data_sources.save(existing.model_copy(update=request.model_dump()))
        await self.registry.invalidate(data_source_id)
        logger.info("Data source updated", data_source_id=data_source_id, trace_id=current_trace_id())
        return updated

    async def delete(self, data_source_id: int) -> None:
        await self.get(data_source_id)
        await self.registry.invalidate(data_source_id)
        removed = await self.index.delete_by_owner(data_source_id)
        await self.data_sources.delete(data_source_id)
        logger.info(
            "Data source deleted",
            data_source_id=data_source_id,
            documents_removed=removed,
            trace_id=current_trace_id(),
        )

    async def test_connection(self, data_source_id: int) -> ConnectionTestResponse:
        data_source = await self.get(data_source_id)
        try:
            await self.registry.test_connection(data_source)
        except DatabaseConnectionError as e:
            return ConnectionTestResponse(success=False, message=e.message)
        return ConnectionTestResponse(success=True, message=f"Connected to {data_source.name}")

    async def test_parameters(self, request: DataSourceRequest) -> ConnectionTestResponse:
        """Test connection settings that have not been saved yet."""
        data_source = DataSource(**request.model_dump())
        try:
            await self.registry.test_connection(data_source)
        except DatabaseConnectionError as e:
            return ConnectionTestResponse(success=False, message=e.message)
        return ConnectionTestResponse(success=True, message=f"Connected to {data_source.name}")
