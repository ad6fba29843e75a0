"""
Connections to the target databases users ask questions about.

Each data source gets one bounded pool, created on first use and cached
by data-source id in TargetDatabaseRegistry. PostgreSQL goes through
asyncpg, MySQL through aiomysql.

Failures are classified in two phases:
- connect/acquire -> DatabaseConnectionError
- statement       -> DatabaseQueryError, or QueryTimeoutError on timeout/cancel
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiomysql
import asyncpg

from ..config import SqlConfig
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.base_enums import Dialect
from ..domain.entities import DataSource
from ..domain.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseQueryError,
    QueryTimeoutError,
)


logger = get_module_logger()

QueryResult = Tuple[List[str], List[Dict[str, Any]]]

# MySQL server error raised when max_execution_time is exceeded
_MYSQL_QUERY_INTERRUPTED = 3024


def unique_columns(names: Sequence[str]) -> List[str]:
    """
    Make result column labels unique.

    Repeated labels get a numeric suffix ("name", "name_2", ...) so that
    every row map has exactly one key per column.
    """
    labels: List[str] = []
    used = set()
    for name in names:
        base = name or "?column?"
        label = base
        suffix = 1
        while label in used:
            suffix += 1
            label = f"{base}_{suffix}"
        used.add(label)
        labels.append(label)
    return labels


def _rows_to_maps(columns: List[str], rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    return [dict(zip(columns, row)) for row in rows]


class TargetDatabase(ABC):
    """A pooled connection to one data source."""

    dialect: Dialect

    def __init__(self, data_source: DataSource, config: SqlConfig):
        self.data_source = data_source
        self.config = config

    @abstractmethod
    async def connect(self) -> None:
        """Create the pool. Raises DatabaseConnectionError."""

    @abstractmethod
    async def close(self) -> None:
        """Close the pool."""

    @abstractmethod
    async def run_query(self, sql: str, max_rows: int, timeout: float) -> QueryResult:
        """
        Run one read-only statement.

        Returns:
            Tuple of (ordered column names, row maps), at most max_rows rows
        """

    @abstractmethod
    async def fetch(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a parameterized introspection query and return all rows."""


class PostgresTarget(TargetDatabase):
    """PostgreSQL data source over an asyncpg pool."""

    dialect = Dialect.POSTGRESQL

    def __init__(self, data_source: DataSource, config: SqlConfig):
        super().__init__(data_source, config)
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        ds = self.data_source
        try:
            self._pool = await asyncpg.create_pool(
                host=ds.host,
                port=ds.port,
                user=ds.username,
                password=ds.password,
                database=ds.db_name,
                min_size=self.config.pool_min_size,
                max_size=self.config.pool_max_size,
                timeout=self.config.connect_timeout_seconds,
                server_settings={"application_name": "sqlbot"},
            )
        except Exception as e:
            error_msg = f"Failed to connect to {ds.host}:{ds.port}/{ds.db_name}: {e}"
            logger.error(error_msg, data_source_id=ds.id, error_type=type(e).__name__, trace_id=current_trace_id())
            raise DatabaseConnectionError(error_msg) from e

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
        self._pool = None

    async def _acquire(self) -> asyncpg.Connection:
        if self._pool is None:
            raise DatabaseConnectionError("Target database pool is not open")
        try:
            return await self._pool.acquire(timeout=self.config.connect_timeout_seconds)
        except Exception as e:
            raise DatabaseConnectionError(f"Failed to acquire connection: {e}") from e

    async def _release(self, conn: asyncpg.Connection) -> None:
        if self._pool is not None:
            await self._pool.release(conn)

    async def run_query(self, sql: str, max_rows: int, timeout: float) -> QueryResult:
        async def _run() -> QueryResult:
            conn = await self._acquire()
            try:
                async with conn.transaction(readonly=True):
                    statement = await conn.prepare(sql)
                    columns = unique_columns([attr.name for attr in statement.get_attributes()])
                    cursor = await statement.cursor()
                    records = await cursor.fetch(max_rows)
                    return columns, _rows_to_maps(columns, [list(r.values()) for r in records])
            finally:
                await self._release(conn)

        try:
            return await asyncio.wait_for(_run(), timeout=timeout)
        except DatabaseConnectionError:
            raise
        except (asyncio.TimeoutError, asyncpg.QueryCanceledError) as e:
            raise QueryTimeoutError(f"Query exceeded {timeout:g} seconds") from e
        except (OSError, asyncpg.ConnectionDoesNotExistError) as e:
            raise DatabaseConnectionError(str(e)) from e
        except Exception as e:
            raise DatabaseQueryError(str(e)) from e

    async def fetch(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        conn = await self._acquire()
        try:
            async with conn.transaction(readonly=True):
                rows = await conn.fetch(sql, *params)
            return [dict(row) for row in rows]
        except Exception as e:
            raise DatabaseQueryError(f"Introspection query failed: {e}") from e
        finally:
            await self._release(conn)


class MySQLTarget(TargetDatabase):
    """MySQL data source over an aiomysql pool."""

    dialect = Dialect.MYSQL

    def __init__(self, data_source: DataSource, config: SqlConfig):
        super().__init__(data_source, config)
        self._pool: Optional[aiomysql.Pool] = None

    async def connect(self) -> None:
        ds = self.data_source
        try:
            self._pool = await aiomysql.create_pool(
                host=ds.host,
                port=ds.port,
                user=ds.username,
                password=ds.password,
                db=ds.db_name,
                minsize=self.config.pool_min_size,
                maxsize=self.config.pool_max_size,
                connect_timeout=self.config.connect_timeout_seconds,
                autocommit=False,
            )
        except Exception as e:
            error_msg = f"Failed to connect to {ds.host}:{ds.port}/{ds.db_name}: {e}"
            logger.error(error_msg, data_source_id=ds.id, error_type=type(e).__name__, trace_id=current_trace_id())
            raise DatabaseConnectionError(error_msg) from e

    async def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
        self._pool = None

    async def _acquire(self) -> aiomysql.Connection:
        if self._pool is None:
            raise DatabaseConnectionError("Target database pool is not open")
        try:
            return await asyncio.wait_for(self._pool.acquire(), timeout=self.config.connect_timeout_seconds)
        except Exception as e:
            raise DatabaseConnectionError(f"Failed to acquire connection: {e}") from e

    async def _release(self, conn: aiomysql.Connection) -> None:
        if self._pool is not None:
            self._pool.release(conn)

    async def run_query(self, sql: str, max_rows: int, timeout: float) -> QueryResult:
        async def _run() -> QueryResult:
            conn = await self._acquire()
            try:
                # Server-side cap and deadline; the statement is streamed so at most max_rows cross the wire
                cursor = await conn.cursor(aiomysql.SSCursor)
                await cursor.execute(f"SET SESSION max_execution_time = {max(int(timeout * 1000), 1)}")
                await cursor.execute(f"SET SESSION sql_select_limit = {int(max_rows)}")
                await cursor.execute("START TRANSACTION READ ONLY")
                await cursor.execute(sql)
                description = cursor.description or ()
                columns = unique_columns([column[0] for column in description])
                raw_rows = list(await cursor.fetchmany(max_rows)) if description else []
                await cursor.close()
                await conn.rollback()
                async with conn.cursor() as reset:
                    await reset.execute("SET SESSION sql_select_limit = DEFAULT, max_execution_time = DEFAULT")
                return columns, _rows_to_maps(columns, raw_rows)
            except BaseException:
                # An interrupted or failed statement leaves the session in an unknown state
                conn.close()
                raise
            finally:
                await self._release(conn)

        try:
            return await asyncio.wait_for(_run(), timeout=timeout)
        except DatabaseConnectionError:
            raise
        except asyncio.TimeoutError as e:
            raise QueryTimeoutError(f"Query exceeded {timeout:g} seconds") from e
        except aiomysql.OperationalError as e:
            code = e.args[0] if e.args else None
            if code == _MYSQL_QUERY_INTERRUPTED:
                raise QueryTimeoutError(str(e)) from e
            if isinstance(code, int) and code >= 2000:
                # 2xxx are client-side errors: lost or refused connection
                raise DatabaseConnectionError(str(e)) from e
            raise DatabaseQueryError(str(e)) from e
        except Exception as e:
            raise DatabaseQueryError(str(e)) from e

    async def fetch(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        conn = await self._acquire()
        try:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(sql, tuple(params))
                rows = await cursor.fetchall()
            await conn.rollback()
            return [dict(row) for row in rows]
        except Exception as e:
            raise DatabaseQueryError(f"Introspection query failed: {e}") from e
        finally:
            await self._release(conn)


_TARGET_TYPES = {
    Dialect.POSTGRESQL: PostgresTarget,
    Dialect.MYSQL: MySQLTarget,
}


def create_target(data_source: DataSource, config: SqlConfig) -> TargetDatabase:
    target_cls = _TARGET_TYPES.get(data_source.dialect)
    if target_cls is None:
        raise ConfigurationError(f"Unsupported database dialect: {data_source.dialect}")
    return target_cls(data_source, config)


class TargetDatabaseRegistry:
    """
    Pool cache keyed by data-source id.

    Usage:
        registry = TargetDatabaseRegistry(settings.sql)
        target = await registry.get(data_source)
        columns, rows = await target.run_query("SELECT 1 AS one", max_rows=10, timeout=5)

        await registry.invalidate(data_source.id)  # after update/delete
        await registry.close_all()                 # on shutdown
    """

    def __init__(self, config: SqlConfig):
        self.config = config
        self._targets: Dict[int, TargetDatabase] = {}
        self._lock = asyncio.Lock()

    async def get(self, data_source: DataSource) -> TargetDatabase:
        """Return the cached pool for a data source, opening it on first use."""
        if data_source.id is None:
            raise ConfigurationError("Data source has no id")

        async with self._lock:
            target = self._targets.get(data_source.id)
            if target is None:
                target = create_target(data_source, self.config)
                await target.connect()
                self._targets[data_source.id] = target
                logger.info(
                    "Target database pool opened",
                    data_source_id=data_source.id,
                    dialect=data_source.dialect.value,
                    trace_id=current_trace_id(),
                )
            return target

    async def invalidate(self, data_source_id: int) -> None:
        """Close and forget the pool of a data source."""
        async with self._lock:
            target = self._targets.pop(data_source_id, None)
        if target is not None:
            await target.close()
            logger.info("Target database pool closed", data_source_id=data_source_id)

    async def close_all(self) -> None:
        async with self._lock:
            targets = list(self._targets.values())
            self._targets.clear()
        for target in targets:
            await target.close()

    async def test_connection(self, data_source: DataSource) -> None:
        """
        Open a throwaway connection and run SELECT 1.

        Raises:
            DatabaseConnectionError: If the database cannot be reached
        """
        timeout = self.config.connect_timeout_seconds
        try:
            if data_source.dialect == Dialect.POSTGRESQL:
                conn = await asyncpg.connect(
                    host=data_source.host,
                    port=data_source.port,
                    user=data_source.username,
                    password=data_source.password,
                    database=data_source.db_name,
                    timeout=timeout,
                )
                try:
                    await conn.fetchval("SELECT 1")
                finally:
                    await conn.close()
            else:
                conn = await aiomysql.connect(
                    host=data_source.host,
                    port=data_source.port,
                    user=data_source.username,
                    password=data_source.password,
                    db=data_source.db_name,
                    connect_timeout=timeout,
                )
                try:
                    async with conn.cursor() as cursor:
                        await cursor.execute("SELECT 1")
                finally:
                    conn.close()
        except Exception as e:
            logger.warning(
                "Connection test failed",
                data_source_id=data_source.id,
                error=str(e),
                trace_id=current_trace_id(),
            )
            raise DatabaseConnectionError(f"Connection test failed: {e}") from e
