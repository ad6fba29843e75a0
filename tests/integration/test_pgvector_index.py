"""
Integration tests for PgVectorIndex against a live pgvector database.

A dedicated table is used so the application's documents are untouched;
every test cleans up its own owner ids.

Usage:
    SQLBOT_RUN_INTEGRATION=1 pytest tests/integration/test_pgvector_index.py -v
"""

import pytest

from sqlbot.config import VectorStoreConfig, get_settings
from sqlbot.domain.base_enums import DocumentKind
from sqlbot.domain.entities import VectorDocument
from sqlbot.infrastructure.database_client import DatabaseClient
from sqlbot.repositories.vector_repository import PgVectorIndex

DIMENSION = 4
OWNER = 990001
OTHER_OWNER = 990002


@pytest.fixture
async def index():
    client = DatabaseClient(get_settings().database)
    await client.connect()
    index = PgVectorIndex(client, VectorStoreConfig(table_name="vector_store_it"), DIMENSION)
    await index.ensure_setup()
    yield index
    await index.delete_by_owner(OWNER)
    await index.delete_by_owner(OTHER_OWNER)
    await client.close()


def _doc(content, vector, owner=OWNER, kind=DocumentKind.SCHEMA, **metadata):
    return VectorDocument(owner_id=owner, kind=kind, content=content, metadata=metadata, embedding=vector)


@pytest.mark.integration
class TestPgVectorIndex:

    @pytest.mark.asyncio
    async def test_search_is_thresholded_and_ordered(self, index):
        await index.insert_batch([
            _doc("low", [0.3, 0.953939, 0.0, 0.0]),
            _doc("high", [0.9, 0.435890, 0.0, 0.0]),
            _doc("mid", [0.6, 0.8, 0.0, 0.0]),
        ])

        results = await index.search([1.0, 0.0, 0.0, 0.0], OWNER, DocumentKind.SCHEMA, top_k=5, threshold=0.5)

        assert [doc.content for doc in results] == ["high", "mid"]
        assert results[0].similarity == pytest.approx(0.9, abs=1e-4)

    @pytest.mark.asyncio
    async def test_search_is_scoped_to_owner_and_kind(self, index):
        await index.insert_batch([
            _doc("mine", [1.0, 0.0, 0.0, 0.0]),
            _doc("example", [1.0, 0.0, 0.0, 0.0], kind=DocumentKind.EXAMPLE),
            _doc("theirs", [1.0, 0.0, 0.0, 0.0], owner=OTHER_OWNER),
        ])

        results = await index.search([1.0, 0.0, 0.0, 0.0], OWNER, DocumentKind.SCHEMA, top_k=5, threshold=0.0)

        assert [doc.content for doc in results] == ["mine"]

    @pytest.mark.asyncio
    async def test_replace_documents(self, index):
        await index.insert_batch([_doc("old", [1.0, 0.0, 0.0, 0.0])])

        await index.replace_documents(OWNER, DocumentKind.SCHEMA, [_doc("new", [1.0, 0.0, 0.0, 0.0])])

        results = await index.search([1.0, 0.0, 0.0, 0.0], OWNER, DocumentKind.SCHEMA, top_k=5, threshold=0.0)
        assert [doc.content for doc in results] == ["new"]

    @pytest.mark.asyncio
    async def test_delete_by_metadata(self, index):
        await index.insert("q1", OWNER, DocumentKind.EXAMPLE, {"example_id": 1}, [1.0, 0.0, 0.0, 0.0])
        await index.insert("q2", OWNER, DocumentKind.EXAMPLE, {"example_id": 2}, [1.0, 0.0, 0.0, 0.0])

        removed = await index.delete_by_metadata(OWNER, DocumentKind.EXAMPLE, "example_id", 1)

        results = await index.search([1.0, 0.0, 0.0, 0.0], OWNER, DocumentKind.EXAMPLE, top_k=5, threshold=0.0)
        assert removed == 1
        assert [doc.content for doc in results] == ["q2"]
