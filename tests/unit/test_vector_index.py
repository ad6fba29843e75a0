"""
Unit tests for the VectorIndex implementations.

InMemoryVectorIndex is tested for search semantics (threshold, ordering,
scoping, top-K); PgVectorIndex is tested against a fake connection to
check the SQL it sends and how rows are mapped back.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, List, Tuple

import pytest

from sqlbot.config import VectorStoreConfig
from sqlbot.domain.base_enums import DocumentKind
from sqlbot.domain.entities import VectorDocument
from sqlbot.domain.errors import VectorStoreError
from sqlbot.repositories.memory_vector_index import InMemoryVectorIndex, cosine_similarity
from sqlbot.repositories.vector_repository import PgVectorIndex, to_vector_literal

QUERY = [1.0, 0.0, 0.0, 0.0]


def _vector_with_similarity(similarity: float) -> List[float]:
    """Unit vector whose cosine with QUERY is `similarity`."""
    return [similarity, (1.0 - similarity ** 2) ** 0.5, 0.0, 0.0]


async def _insert(index, content, similarity, owner_id=1, kind=DocumentKind.SCHEMA, metadata=None):
    return await index.insert(
        content=content,
        owner_id=owner_id,
        kind=kind,
        metadata=metadata or {},
        vector=_vector_with_similarity(similarity),
    )


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 0]) == 0.0


class TestInMemorySearch:

    @pytest.mark.asyncio
    async def test_threshold_and_descending_order(self, vector_index):
        await _insert(vector_index, "low", 0.3)
        await _insert(vector_index, "high", 0.9)
        await _insert(vector_index, "mid", 0.6)

        docs = await vector_index.search(QUERY, owner_id=1, kind=DocumentKind.SCHEMA, top_k=5, threshold=0.5)

        assert [doc.content for doc in docs] == ["high", "mid"]
        assert docs[0].similarity == pytest.approx(0.9)
        assert docs[1].similarity == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_top_k_caps_results(self, vector_index):
        for i in range(4):
            await _insert(vector_index, f"doc {i}", 0.8)

        docs = await vector_index.search(QUERY, owner_id=1, kind=DocumentKind.SCHEMA, top_k=2, threshold=0.0)

        assert [doc.content for doc in docs] == ["doc 0", "doc 1"]

    @pytest.mark.asyncio
    async def test_scoped_by_owner_and_kind(self, vector_index):
        await _insert(vector_index, "mine", 0.9)
        await _insert(vector_index, "other owner", 0.9, owner_id=2)
        await _insert(vector_index, "an example", 0.9, kind=DocumentKind.EXAMPLE)

        docs = await vector_index.search(QUERY, owner_id=1, kind=DocumentKind.SCHEMA, top_k=5, threshold=0.5)

        assert [doc.content for doc in docs] == ["mine"]

    @pytest.mark.asyncio
    async def test_nothing_above_threshold_is_empty(self, vector_index):
        await _insert(vector_index, "weak", 0.2)
        assert await vector_index.search(QUERY, 1, DocumentKind.SCHEMA, top_k=5, threshold=0.5) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("top_k, threshold", [(0, 0.5), (5, 1.5), (5, -2.0)])
    async def test_invalid_arguments(self, vector_index, top_k, threshold):
        with pytest.raises(VectorStoreError):
            await vector_index.search(QUERY, 1, DocumentKind.SCHEMA, top_k=top_k, threshold=threshold)

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self, vector_index):
        with pytest.raises(VectorStoreError, match="dimension mismatch"):
            await vector_index.insert("x", 1, DocumentKind.SCHEMA, {}, [1.0, 0.0])
        with pytest.raises(VectorStoreError, match="dimension mismatch"):
            await vector_index.search([1.0], 1, DocumentKind.SCHEMA, top_k=5, threshold=0.5)


class TestInMemoryWrites:

    @pytest.mark.asyncio
    async def test_replace_documents_swaps_the_set(self, vector_index):
        await _insert(vector_index, "old orders", 0.9)
        await _insert(vector_index, "example", 0.9, kind=DocumentKind.EXAMPLE)

        new_docs = [
            VectorDocument(owner_id=1, kind=DocumentKind.SCHEMA, content="new orders",
                           embedding=_vector_with_similarity(0.9)),
        ]
        await vector_index.replace_documents(1, DocumentKind.SCHEMA, new_docs)

        contents = sorted(doc.content for doc in vector_index.documents)
        assert contents == ["example", "new orders"]

    @pytest.mark.asyncio
    async def test_replace_with_bad_vector_keeps_old_set(self, vector_index):
        await _insert(vector_index, "old orders", 0.9)
        bad = [VectorDocument(owner_id=1, kind=DocumentKind.SCHEMA, content="bad", embedding=[1.0])]

        with pytest.raises(VectorStoreError):
            await vector_index.replace_documents(1, DocumentKind.SCHEMA, bad)

        assert [doc.content for doc in vector_index.documents] == ["old orders"]

    @pytest.mark.asyncio
    async def test_delete_by_metadata(self, vector_index):
        await _insert(vector_index, "q1", 0.9, kind=DocumentKind.EXAMPLE, metadata={"example_id": 1})
        await _insert(vector_index, "q2", 0.9, kind=DocumentKind.EXAMPLE, metadata={"example_id": 2})

        deleted = await vector_index.delete_by_metadata(1, DocumentKind.EXAMPLE, "example_id", "1")

        assert deleted == 1
        assert [doc.content for doc in vector_index.documents] == ["q2"]

    @pytest.mark.asyncio
    async def test_delete_by_owner(self, vector_index):
        await _insert(vector_index, "a", 0.9)
        await _insert(vector_index, "b", 0.9, kind=DocumentKind.EXAMPLE)
        await _insert(vector_index, "c", 0.9, owner_id=2)

        assert await vector_index.delete_by_owner(1) == 2
        assert [doc.content for doc in vector_index.documents] == ["c"]


# -------------------------
# PgVectorIndex with a fake connection
# -------------------------

class FakeConnection:
    def __init__(self, rows=None):
        self.rows = rows or []
        self.executed: List[Tuple[str, Tuple[Any, ...]]] = []
        self.fetched: List[Tuple[str, Tuple[Any, ...]]] = []
        self._next_id = 100

    async def execute(self, sql, *params):
        self.executed.append((sql, params))
        return "DELETE 2" if sql.strip().startswith("DELETE") else "OK"

    async def fetch(self, sql, *params):
        self.fetched.append((sql, params))
        return self.rows

    async def fetchrow(self, sql, *params):
        self.fetched.append((sql, params))
        self._next_id += 1
        return {"id": self._next_id}


class FakeDatabaseClient:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.read_only_flags: List[bool] = []

    @asynccontextmanager
    async def acquire_connection(self, read_only: bool = True):
        self.read_only_flags.append(read_only)
        yield self.conn


@pytest.fixture
def pg_index_factory():
    def _build(rows=None):
        conn = FakeConnection(rows)
        db = FakeDatabaseClient(conn)
        return PgVectorIndex(db, VectorStoreConfig(table_name="vector_store"), dimension=4), conn, db
    return _build


class TestPgVectorIndex:

    def test_vector_literal(self):
        assert to_vector_literal([1, 0.5]) == "[1.0,0.5]"

    @pytest.mark.asyncio
    async def test_search_maps_rows(self, pg_index_factory):
        rows = [
            {"id": 3, "content": "Table: public.orders", "doc_type": "schema",
             "metadata": json.dumps({"table_name": "public.orders"}), "similarity": 0.91},
            {"id": 7, "content": "Table: public.customers", "doc_type": "schema",
             "metadata": {"table_name": "public.customers"}, "similarity": 0.62},
        ]
        index, conn, db = pg_index_factory(rows)

        docs = await index.search(QUERY, owner_id=7, kind=DocumentKind.SCHEMA, top_k=5, threshold=0.5)

        assert [doc.id for doc in docs] == [3, 7]
        assert docs[0].metadata == {"table_name": "public.orders"}
        assert docs[1].similarity == pytest.approx(0.62)

        sql, params = conn.fetched[-1]
        assert "(1 - (embedding <=> $1::vector)) >= $4" in sql
        assert "ORDER BY (embedding <=> $1::vector) ASC, id ASC" in sql
        assert params == ("[1.0,0.0,0.0,0.0]", 7, "schema", 0.5, 5)
        assert db.read_only_flags[-1] is True

    @pytest.mark.asyncio
    async def test_setup_runs_once(self, pg_index_factory):
        index, conn, _ = pg_index_factory()

        await index.ensure_setup()
        await index.ensure_setup()

        create_statements = [sql for sql, _ in conn.executed if "CREATE TABLE" in sql]
        assert len(create_statements) == 1
        assert "vector(4)" in create_statements[0]

    @pytest.mark.asyncio
    async def test_replace_deletes_then_inserts_in_one_connection(self, pg_index_factory):
        index, conn, db = pg_index_factory()
        documents = [
            VectorDocument(owner_id=7, kind=DocumentKind.SCHEMA, content=f"Table {i}",
                           metadata={"table_name": f"t{i}"}, embedding=QUERY)
            for i in range(2)
        ]

        ids = await index.replace_documents(7, DocumentKind.SCHEMA, documents)

        assert ids == [101, 102]
        delete_sql, delete_params = conn.executed[-1]
        assert delete_sql.startswith("DELETE FROM vector_store")
        assert delete_params == (7, "schema")
        assert db.read_only_flags[-1] is False

    @pytest.mark.asyncio
    async def test_delete_by_metadata_returns_count(self, pg_index_factory):
        index, conn, _ = pg_index_factory()

        deleted = await index.delete_by_metadata(7, DocumentKind.EXAMPLE, "example_id", 12)

        assert deleted == 2
        sql, params = conn.executed[-1]
        assert "metadata ->> $3 = $4" in sql
        assert params == (7, "example", "example_id", "12")

    @pytest.mark.asyncio
    async def test_dimension_checked_before_query(self, pg_index_factory):
        index, conn, _ = pg_index_factory()
        with pytest.raises(VectorStoreError):
            await index.search([1.0, 0.0], 7, DocumentKind.SCHEMA, top_k=5, threshold=0.5)
        assert conn.fetched == []
