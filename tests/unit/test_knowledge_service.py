"""Unit tests for KnowledgeService (glossary terms and indexed SQL examples)."""

import pytest

from sqlbot.domain.base_enums import DocumentKind
from sqlbot.domain.entities import SqlExample, TermGlossary
from sqlbot.domain.errors import EmbeddingError, NotFoundError
from sqlbot.repositories.stores import InMemorySqlExampleStore
from sqlbot.services.knowledge_service import EXAMPLE_ID_KEY, KnowledgeService


@pytest.fixture
def example_store():
    return InMemorySqlExampleStore()


@pytest.fixture
def knowledge_factory(glossary_store, example_store, data_source_store, vector_index, fake_embeddings_factory):
    def _build(embeddings=None):
        return KnowledgeService(
            terms=glossary_store,
            examples=example_store,
            data_sources=data_source_store,
            embedding_client=embeddings or fake_embeddings_factory(),
            index=vector_index,
        )
    return _build


def _example_docs(index):
    return [doc for doc in index.documents if doc.kind == DocumentKind.EXAMPLE]


class TestTerms:

    @pytest.mark.asyncio
    async def test_save_and_list(self, knowledge_factory, saved_data_source):
        service = knowledge_factory()
        await service.save_term(TermGlossary(term="GMV", definition="gross merchandise value", data_source_id=1))
        await service.save_term(TermGlossary(term="FY", definition="fiscal year"))

        assert [t.term for t in await service.list_terms()] == ["GMV", "FY"]
        assert [t.term for t in await service.list_terms(1)] == ["GMV", "FY"]
        assert [t.term for t in await service.list_terms(2)] == ["FY"]

    @pytest.mark.asyncio
    async def test_update_existing_term(self, knowledge_factory):
        service = knowledge_factory()
        saved = await service.save_term(TermGlossary(term="GMV", definition="old"))

        updated = await service.save_term(saved.model_copy(update={"definition": "new"}))

        assert updated.id == saved.id
        assert [t.definition for t in await service.list_terms()] == ["new"]

    @pytest.mark.asyncio
    async def test_unknown_data_source(self, knowledge_factory):
        with pytest.raises(NotFoundError):
            await knowledge_factory().save_term(TermGlossary(term="GMV", definition="x", data_source_id=99))

    @pytest.mark.asyncio
    async def test_update_unknown_term(self, knowledge_factory):
        with pytest.raises(NotFoundError):
            await knowledge_factory().save_term(TermGlossary(id=5, term="GMV", definition="x"))

    @pytest.mark.asyncio
    async def test_delete(self, knowledge_factory):
        service = knowledge_factory()
        saved = await service.save_term(TermGlossary(term="GMV", definition="x"))

        await service.delete_term(saved.id)

        assert await service.list_terms() == []
        with pytest.raises(NotFoundError):
            await service.delete_term(saved.id)


class TestExamples:

    @pytest.mark.asyncio
    async def test_save_indexes_exactly_one_document(self, knowledge_factory, vector_index, saved_data_source):
        service = knowledge_factory()

        saved = await service.save_example(
            SqlExample(data_source_id=1, question="How many orders?", sql="SELECT count(*) FROM orders")
        )

        docs = _example_docs(vector_index)
        assert len(docs) == 1
        assert docs[0].content == "How many orders?"
        assert docs[0].owner_id == 1
        assert docs[0].metadata == {EXAMPLE_ID_KEY: saved.id, "sql": "SELECT count(*) FROM orders"}

    @pytest.mark.asyncio
    async def test_update_reindexes(self, knowledge_factory, vector_index, saved_data_source):
        service = knowledge_factory()
        saved = await service.save_example(SqlExample(data_source_id=1, question="old question", sql="SELECT 1"))

        await service.save_example(saved.model_copy(update={"question": "new question", "sql": "SELECT 2"}))

        docs = _example_docs(vector_index)
        assert len(docs) == 1
        assert docs[0].content == "new question"
        assert docs[0].metadata["sql"] == "SELECT 2"

    @pytest.mark.asyncio
    async def test_embedding_failure_leaves_store_and_index_unchanged(
        self, knowledge_factory, example_store, vector_index, saved_data_source, fake_embeddings_factory,
    ):
        service = knowledge_factory(fake_embeddings_factory(error=EmbeddingError("provider down")))

        with pytest.raises(EmbeddingError):
            await service.save_example(SqlExample(data_source_id=1, question="q", sql="SELECT 1"))

        assert await example_store.list() == []
        assert _example_docs(vector_index) == []

    @pytest.mark.asyncio
    async def test_delete_removes_document(self, knowledge_factory, vector_index, saved_data_source):
        service = knowledge_factory()
        first = await service.save_example(SqlExample(data_source_id=1, question="q1", sql="SELECT 1"))
        await service.save_example(SqlExample(data_source_id=1, question="q2", sql="SELECT 2"))

        await service.delete_example(first.id)

        assert [e.question for e in await service.list_examples(1)] == ["q2"]
        assert [doc.content for doc in _example_docs(vector_index)] == ["q2"]

    @pytest.mark.asyncio
    async def test_missing_example_or_data_source(self, knowledge_factory, saved_data_source):
        service = knowledge_factory()
        with pytest.raises(NotFoundError):
            await service.save_example(SqlExample(data_source_id=99, question="q", sql="SELECT 1"))
        with pytest.raises(NotFoundError):
            await service.save_example(SqlExample(id=7, data_source_id=1, question="q", sql="SELECT 1"))
        with pytest.raises(NotFoundError):
            await service.delete_example(7)
