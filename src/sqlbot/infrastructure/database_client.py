"""
asyncpg pool for SQLBot's own PostgreSQL database.

Only the pgvector document store lives here. Databases that users ask
questions about are separate data sources, reached through
TargetDatabaseRegistry with their own pools.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import asyncpg

from ..config import DatabaseConfig
from ..domain.errors import DatabaseConnectionError
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id

logger = get_module_logger()


class DatabaseClient:
    """
    Connection pool with per-use transactions.

    Connections are only handed out inside a transaction, READ ONLY unless
    the caller asks for writes; PgVectorIndex owns all SQL.

    Usage:
        client = DatabaseClient(settings.database)
        await client.connect()
        async with client.acquire_connection(read_only=False) as conn:
            await conn.execute("DELETE FROM vector_store WHERE data_source_id = $1", 7)
        await client.close()
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        """
        Open the pool and verify it with SELECT 1.

        Raises:
            DatabaseConnectionError: If the database is unreachable, missing or rejects the login
        """
        if self._pool is not None:
            logger.warning("Database client already connected")
            return

        trace_id = current_trace_id()
        config = self.config
        try:
            pool = await asyncpg.create_pool(
                dsn=config.database_url,
                min_size=config.connection_pool_min_size,
                max_size=config.connection_pool_max_size,
                command_timeout=config.query_timeout_seconds,
                timeout=config.connection_timeout_seconds,
                max_queries=config.connection_pool_max_queries,
                max_cached_statement_lifetime=config.max_cached_statement_lifetime,
                server_settings={
                    "application_name": config.application_name,
                    "search_path": config.default_schema,
                    "jit": "on" if config.jit_enabled else "off",
                },
            )
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except asyncpg.InvalidCatalogNameError as e:
            raise self._connect_failed(f"Database does not exist: {e}", e, trace_id) from e
        except asyncpg.InvalidPasswordError as e:
            raise self._connect_failed(f"Authentication failed: {e}", e, trace_id) from e
        except Exception as e:
            raise self._connect_failed(f"Failed to connect to database: {e}", e, trace_id) from e

        self._pool = pool
        logger.info(
            "Database connection established",
            pool_max_size=config.connection_pool_max_size,
            default_schema=config.default_schema,
            application_name=config.application_name,
            trace_id=trace_id,
        )

    @staticmethod
    def _connect_failed(message: str, error: Exception, trace_id: Optional[str]) -> DatabaseConnectionError:
        logger.error(message, error_type=type(error).__name__, trace_id=trace_id)
        return DatabaseConnectionError(message)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed", trace_id=current_trace_id())

    def is_connected(self) -> bool:
        return self._pool is not None

    async def health_check(self) -> Dict[str, Any]:
        """Status dict for /health; never raises."""
        if self._pool is None:
            return {"status": "unhealthy", "connected": False, "error": "Database client not connected"}

        try:
            async with self.acquire_connection() as conn:
                await conn.fetchval("SELECT 1")
        except Exception as e:
            logger.error(
                "Database health check failed",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=current_trace_id(),
            )
            return {"status": "unhealthy", "connected": True, "error": str(e)}

        return {"status": "healthy", "connected": True, "pool_size": self.config.connection_pool_max_size}

    @asynccontextmanager
    async def acquire_connection(self, read_only: bool = True) -> AsyncIterator[asyncpg.Connection]:
        """
        Yield a pooled connection inside a transaction.

        With read_only=True the transaction is READ ONLY, so writes fail at
        the server.

        Raises:
            DatabaseConnectionError: If the client is not connected or no connection is free
        """
        pool = self._pool
        if pool is None:
            raise DatabaseConnectionError("Database client is not connected")

        try:
            connection = await pool.acquire(timeout=self.config.connection_timeout_seconds)
        except Exception as e:
            raise DatabaseConnectionError(f"Failed to acquire database connection: {e}") from e

        try:
            async with connection.transaction(readonly=read_only):
                yield connection
        finally:
            await pool.release(connection)
