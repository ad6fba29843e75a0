"""
Vector repository for schema and example documents.

Handles both setup (extension, table, indexes) and runtime operations
(insert, delete, similarity search) on the pgvector table. Uses the shared
DatabaseClient for connection pooling.

Row layout:
    id BIGSERIAL, content TEXT, data_source_id BIGINT, doc_type VARCHAR(20),
    metadata JSONB, embedding vector(dim), created_at TIMESTAMPTZ

Similarity is computed and thresholded in SQL, so rows below the
threshold never leave the database.
"""

import json
from typing import Any, Dict, List, Mapping, Protocol, Sequence

from sqlbot.config import VectorStoreConfig
from sqlbot.config_constants import PGVECTOR_DISTANCE_OPERATORS, PGVECTOR_OPS_MAP, DistanceStrategy
from sqlbot.domain.base_enums import DocumentKind
from sqlbot.domain.entities import VectorDocument
from sqlbot.domain.errors import VectorStoreError
from sqlbot.domain.responses import RetrievedDoc
from sqlbot.infrastructure.database_client import DatabaseClient
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.serialization import sanitize_for_json
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()


class VectorIndex(Protocol):
    """Storage and top-K similarity search over VectorDocuments."""

    dimension: int

    async def ensure_setup(self) -> None: ...

    async def insert(
        self,
        content: str,
        owner_id: int,
        kind: DocumentKind,
        metadata: Mapping[str, Any],
        vector: Sequence[float],
    ) -> int: ...

    async def insert_batch(self, documents: Sequence[VectorDocument]) -> List[int]: ...

    async def replace_documents(
        self, owner_id: int, kind: DocumentKind, documents: Sequence[VectorDocument]
    ) -> List[int]: ...

    async def delete_by_owner_and_kind(self, owner_id: int, kind: DocumentKind) -> int: ...

    async def delete_by_owner(self, owner_id: int) -> int: ...

    async def delete_by_metadata(self, owner_id: int, kind: DocumentKind, key: str, value: Any) -> int: ...

    async def search(
        self,
        query_vector: Sequence[float],
        owner_id: int,
        kind: DocumentKind,
        top_k: int,
        threshold: float,
    ) -> List[RetrievedDoc]: ...


def to_vector_literal(vector: Sequence[float]) -> str:
    """pgvector input format: '[0.1,0.2,0.3]'."""
    return f"[{','.join(str(float(x)) for x in vector)}]"


def check_search_args(top_k: int, threshold: float) -> None:
    if top_k < 1:
        raise VectorStoreError(f"top_k must be >= 1, got {top_k}")
    if not -1.0 <= threshold <= 1.0:
        raise VectorStoreError(f"threshold must be between -1.0 and 1.0, got {threshold}")


class PgVectorIndex:
    """
    pgvector-backed VectorIndex.

    Usage:
        index = PgVectorIndex(db_client, settings.vector_store, dimension=1024)
        await index.ensure_setup()

        await index.insert("Table: orders ...", owner_id=7, kind=DocumentKind.SCHEMA,
                           metadata={"table_name": "public.orders"}, vector=vec)
        docs = await index.search(query_vec, owner_id=7, kind=DocumentKind.SCHEMA,
                                  top_k=5, threshold=0.5)
    """

    def __init__(self, db_client: DatabaseClient, config: VectorStoreConfig, dimension: int):
        """`dimension` is fixed for the table; every stored vector must match it."""
        self.db = db_client
        self.config = config
        self.dimension = dimension
        self._setup_done = False

        logger.info(
            "PgVectorIndex initialized",
            table_name=config.table_name,
            dimension=dimension,
            use_hnsw=config.use_hnsw,
            distance_strategy=str(config.distance_strategy),
            trace_id=current_trace_id(),
        )

    async def ensure_setup(self) -> None:
        """
        Ensure the vector table and indexes exist (idempotent).

        Raises:
            VectorStoreError: If setup fails
        """
        if self._setup_done:
            return

        trace_id = current_trace_id()
        table = self.config.table_name

        try:
            logger.info("Ensuring vector store setup", table_name=table, trace_id=trace_id)

            async with self.db.acquire_connection(read_only=False) as conn:
                await conn.execute("CREATE EXTENSION IF NOT EXISTS vector;")
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id BIGSERIAL PRIMARY KEY,
                        content TEXT NOT NULL,
                        data_source_id BIGINT NOT NULL,
                        doc_type VARCHAR(20) NOT NULL CHECK (doc_type IN ('schema', 'example')),
                        metadata JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                        embedding vector({self.dimension}) NOT NULL,
                        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                await conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_owner_kind ON {table}(data_source_id, doc_type);"
                )
                if self.config.use_hnsw:
                    ops_class = PGVECTOR_OPS_MAP[self.config.distance_strategy]
                    await conn.execute(
                        f"""
                        CREATE INDEX IF NOT EXISTS {table}_hnsw_idx
                        ON {table}
                        USING hnsw (embedding {ops_class})
                        WITH (m = {self.config.hnsw_m}, ef_construction = {self.config.hnsw_ef_construction});
                        """
                    )

            self._setup_done = True
            logger.info("Vector store setup complete", trace_id=trace_id)

        except Exception as e:
            logger.error(
                "Failed to setup vector store",
                error=str(e),
                trace_id=trace_id,
                exc_info=True,
            )
            raise VectorStoreError(f"Failed to setup vector store: {e}") from e

    async def insert(
        self,
        content: str,
        owner_id: int,
        kind: DocumentKind,
        metadata: Mapping[str, Any],
        vector: Sequence[float],
    ) -> int:
        """Insert one document and return its id."""
        document = VectorDocument(
            owner_id=owner_id,
            kind=kind,
            content=content,
            metadata=dict(metadata),
            embedding=list(vector),
        )
        ids = await self.insert_batch([document])
        return ids[0]

    async def insert_batch(self, documents: Sequence[VectorDocument]) -> List[int]:
        """
        Insert documents in one transaction.

        Raises:
            VectorStoreError: On dimension mismatch or database failure
        """
        if not documents:
            return []
        await self.ensure_setup()

        try:
            async with self.db.acquire_connection(read_only=False) as conn:
                return await self._insert_with_connection(conn, documents)
        except VectorStoreError:
            raise
        except Exception as e:
            logger.error("Failed to insert documents", error=str(e), trace_id=current_trace_id(), exc_info=True)
            raise VectorStoreError(f"Failed to insert documents: {e}") from e

    async def replace_documents(
        self, owner_id: int, kind: DocumentKind, documents: Sequence[VectorDocument]
    ) -> List[int]:
        """
        Delete all documents of (owner, kind) and insert the new set atomically.

        Readers see either the old set or the new one, never a mix.
        """
        await self.ensure_setup()
        trace_id = current_trace_id()

        try:
            async with self.db.acquire_connection(read_only=False) as conn:
                status = await conn.execute(
                    f"DELETE FROM {self.config.table_name} WHERE data_source_id = $1 AND doc_type = $2;",
                    owner_id,
                    kind.value,
                )
                ids = await self._insert_with_connection(conn, documents)

            logger.info(
                "Documents replaced",
                owner_id=owner_id,
                kind=kind.value,
                deleted=_affected_rows(status),
                inserted=len(ids),
                trace_id=trace_id,
            )
            return ids

        except VectorStoreError:
            raise
        except Exception as e:
            logger.error("Failed to replace documents", error=str(e), trace_id=trace_id, exc_info=True)
            raise VectorStoreError(f"Failed to replace documents: {e}") from e

    async def _insert_with_connection(self, conn, documents: Sequence[VectorDocument]) -> List[int]:
        """Insert on `conn`; the caller owns the surrounding transaction."""
        query = f"""
            INSERT INTO {self.config.table_name}
                (content, data_source_id, doc_type, metadata, embedding)
            VALUES ($1, $2, $3, $4::jsonb, $5::vector)
            RETURNING id;
        """

        doc_ids: List[int] = []
        for document in documents:
            self._check_dimension(document.embedding)
            row = await conn.fetchrow(
                query,
                document.content,
                document.owner_id,
                document.kind.value,
                json.dumps(sanitize_for_json(document.metadata)),
                to_vector_literal(document.embedding),
            )
            doc_ids.append(int(row["id"]))
        return doc_ids

    async def delete_by_owner_and_kind(self, owner_id: int, kind: DocumentKind) -> int:
        return await self._delete(
            "data_source_id = $1 AND doc_type = $2", owner_id, kind.value
        )

    async def delete_by_owner(self, owner_id: int) -> int:
        return await self._delete("data_source_id = $1", owner_id)

    async def delete_by_metadata(self, owner_id: int, kind: DocumentKind, key: str, value: Any) -> int:
        return await self._delete(
            "data_source_id = $1 AND doc_type = $2 AND metadata ->> $3 = $4",
            owner_id,
            kind.value,
            key,
            str(value),
        )

    async def _delete(self, where_sql: str, *params: Any) -> int:
        await self.ensure_setup()
        trace_id = current_trace_id()
        try:
            async with self.db.acquire_connection(read_only=False) as conn:
                status = await conn.execute(
                    f"DELETE FROM {self.config.table_name} WHERE {where_sql};", *params
                )
            deleted = _affected_rows(status)
            logger.info("Documents deleted", deleted=deleted, filter=where_sql, trace_id=trace_id)
            return deleted
        except Exception as e:
            logger.error("Failed to delete documents", error=str(e), trace_id=trace_id, exc_info=True)
            raise VectorStoreError(f"Failed to delete documents: {e}") from e

    async def search(
        self,
        query_vector: Sequence[float],
        owner_id: int,
        kind: DocumentKind,
        top_k: int,
        threshold: float,
    ) -> List[RetrievedDoc]:
        """
        Top-K documents of (owner, kind) with similarity >= threshold.

        Ordered by ascending distance; ties are broken by row id.

        Raises:
            VectorStoreError: If arguments are invalid or the query fails
        """
        check_search_args(top_k, threshold)
        self._check_dimension(query_vector)
        await self.ensure_setup()

        trace_id = current_trace_id()
        distance_sql = f"(embedding {self._distance_operator()} $1::vector)"
        similarity_sql = self._similarity_sql(distance_sql)

        sql = f"""
            SELECT
                id,
                content,
                doc_type,
                metadata,
                {similarity_sql} AS similarity
            FROM {self.config.table_name}
            WHERE data_source_id = $2
              AND doc_type = $3
              AND {similarity_sql} >= $4
            ORDER BY {distance_sql} ASC, id ASC
            LIMIT $5;
        """

        try:
            async with self.db.acquire_connection() as conn:
                rows = await conn.fetch(
                    sql,
                    to_vector_literal(query_vector),
                    owner_id,
                    kind.value,
                    threshold,
                    top_k,
                )
        except Exception as e:
            logger.error("Failed to search documents", error=str(e), trace_id=trace_id, exc_info=True)
            raise VectorStoreError(f"Failed to search documents: {e}") from e

        results = [
            RetrievedDoc(
                id=int(row["id"]),
                content=row["content"],
                kind=DocumentKind(row["doc_type"]),
                similarity=max(-1.0, min(1.0, float(row["similarity"]))),
                metadata=_load_metadata(row["metadata"]),
            )
            for row in rows
        ]

        logger.info(
            "Similar documents found",
            owner_id=owner_id,
            kind=kind.value,
            result_count=len(results),
            trace_id=trace_id,
        )
        return results

    # -------------------------
    # Private helper methods
    # -------------------------

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise VectorStoreError(
                f"Vector dimension mismatch: expected {self.dimension}, got {len(vector)}"
            )

    def _distance_operator(self) -> str:
        return PGVECTOR_DISTANCE_OPERATORS[self.config.distance_strategy]

    def _similarity_sql(self, distance_sql: str) -> str:
        """
        Distance expression rewritten so that larger means more similar.

        <#> yields the negated inner product, hence the sign flip.
        """
        if self.config.distance_strategy == DistanceStrategy.COSINE:
            return f"(1 - {distance_sql})"
        if self.config.distance_strategy == DistanceStrategy.EUCLIDEAN:
            return f"(1.0 / (1.0 + {distance_sql}))"
        return f"(-{distance_sql})"


def _load_metadata(raw: Any) -> Dict[str, Any]:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    return json.loads(raw)


def _affected_rows(status: str) -> int:
    """Parse asyncpg's command status, e.g. 'DELETE 3'."""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0
