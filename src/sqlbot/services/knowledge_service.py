"""
Knowledge Service for glossary terms and reference SQL examples.

Examples are also indexed: each saved example has exactly one `example`
document in the vector index whose content is the example question, so
similar questions retrieve it as a few-shot reference.
"""

from typing import List, Optional

from sqlbot.domain.base_enums import DocumentKind
from sqlbot.domain.entities import SqlExample, TermGlossary
from sqlbot.domain.errors import NotFoundError
from sqlbot.infrastructure.embedding_client import EmbeddingClient
from sqlbot.repositories.stores import DataSourceStore, SqlExampleStore, TermGlossaryStore
from sqlbot.repositories.vector_repository import VectorIndex
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()

EXAMPLE_ID_KEY = "example_id"


class KnowledgeService:
    """
    Service for the knowledge base.

    Usage:
        service = KnowledgeService(terms, examples, data_sources, embedding_client, index)
        await service.save_term(TermGlossary(term="GMV", definition="Gross merchandise value"))
        await service.save_example(SqlExample(data_source_id=7, question="...", sql="SELECT ..."))
    """

    def __init__(
        self,
        terms: TermGlossaryStore,
        examples: SqlExampleStore,
        data_sources: DataSourceStore,
        embedding_client: EmbeddingClient,
        index: VectorIndex,
    ):
        self.terms = terms
        self.examples = examples
        self.data_sources = data_sources
        self.embedding_client = embedding_client
        self.index = index

    # -------------------------
    # Glossary
    # -------------------------

    async def list_terms(self, data_source_id: Optional[int] = None) -> List[TermGlossary]:
        if data_source_id is None:
            return await self.terms.list()
        return await self.terms.list_for_data_source(data_source_id)

    async def save_term(self, term: TermGlossary) -> TermGlossary:
        if term.data_source_id is not None:
            await self._require_data_source(term.data_source_id)
        if term.id is not None and await self.terms.get(term.id) is None:
            raise NotFoundError(f"Term {term.id} not found")

        saved = await self.terms.save(term)
        logger.info("Glossary term saved", term_id=saved.id, term=saved.term, trace_id=current_trace_id())
        return saved

    async def delete_term(self, term_id: int) -> None:
        if not await self.terms.delete(term_id):
            raise NotFoundError(f"Term {term_id} not found")
        logger.info("Glossary term deleted", term_id=term_id, trace_id=current_trace_id())

    # -------------------------
    # Examples
    # -------------------------

    async def list_examples(self, data_source_id: Optional[int] = None) -> List[SqlExample]:
        return await self.examples.list(data_source_id)

    async def save_example(self, example: SqlExample) -> SqlExample:
        """
        Save an example and re-index it.

        The question is embedded before anything is stored, so a provider
        failure leaves both the store and the index unchanged.

        Raises:
            NotFoundError: If the data source or the example (on update) does not exist
            EmbeddingError: If the question cannot be embedded
        """
        trace_id = current_trace_id()
        await self._require_data_source(example.data_source_id)

        previous: Optional[SqlExample] = None
        if example.id is not None:
            previous = await self.examples.get(example.id)
            if previous is None:
                raise NotFoundError(f"Example {example.id} not found")

        vector = await self.embedding_client.embed(example.question)
        saved = await self.examples.save(example)

        if previous is not None:
            await self.index.delete_by_metadata(
                previous.data_source_id, DocumentKind.EXAMPLE, EXAMPLE_ID_KEY, saved.id
            )
        await self.index.insert(
            content=saved.question,
            owner_id=saved.data_source_id,
            kind=DocumentKind.EXAMPLE,
            metadata={EXAMPLE_ID_KEY: saved.id, "sql": saved.sql},
            vector=vector,
        )

        logger.info(
            "SQL example saved and indexed",
            example_id=saved.id,
            data_source_id=saved.data_source_id,
            reindexed=previous is not None,
            trace_id=trace_id,
        )
        return saved

    async def delete_example(self, example_id: int) -> None:
        example = await self.examples.get(example_id)
        if example is None:
            raise NotFoundError(f"Example {example_id} not found")

        await self.examples.delete(example_id)
        removed = await self.index.delete_by_metadata(
            example.data_source_id, DocumentKind.EXAMPLE, EXAMPLE_ID_KEY, example_id
        )
        logger.info(
            "SQL example deleted",
            example_id=example_id,
            documents_removed=removed,
            trace_id=current_trace_id(),
        )

    async def _require_data_source(self, data_source_id: int) -> None:
        if await self.data_sources.get(data_source_id) is None:
            raise NotFoundError(f"Data source {data_source_id} not found")
