"""
Retrieval of grounding documents for a question.

The question is embedded once per call site (callers may pass a
precomputed vector to share it between the schema and example lookups);
threshold filtering and top-K capping happen in the VectorIndex.
"""

from typing import List, Optional, Sequence

from sqlbot.config import RetrievalConfig
from sqlbot.domain.base_enums import DocumentKind
from sqlbot.domain.responses import RetrievedDoc
from sqlbot.infrastructure.embedding_client import EmbeddingClient
from sqlbot.repositories.vector_repository import VectorIndex
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()


class RetrievalEngine:
    """
    Fetches schema fragments and example Q->SQL pairs for a question.

    Usage:
        engine = RetrievalEngine(embedding_client, index, settings.retrieval)
        vector = await engine.embed_question("top 5 customers by revenue")
        schema_docs = await engine.retrieve_schema(question, 7, query_vector=vector)
        example_docs = await engine.retrieve_examples(question, 7, query_vector=vector)

    An empty list means nothing cleared the threshold; it is not an error.
    """

    def __init__(self, embedding_client: EmbeddingClient, index: VectorIndex, config: RetrievalConfig):
        self.embeddings = embedding_client
        self.index = index
        self.config = config

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def embed_question(self, question: str) -> List[float]:
        return await self.embeddings.embed(question)

    async def retrieve_schema(
        self,
        question: str,
        data_source_id: int,
        query_vector: Optional[Sequence[float]] = None,
    ) -> List[RetrievedDoc]:
        return await self._retrieve(question, data_source_id, DocumentKind.SCHEMA, query_vector)

    async def retrieve_examples(
        self,
        question: str,
        data_source_id: int,
        query_vector: Optional[Sequence[float]] = None,
    ) -> List[RetrievedDoc]:
        return await self._retrieve(question, data_source_id, DocumentKind.EXAMPLE, query_vector)

    async def _retrieve(
        self,
        question: str,
        data_source_id: int,
        kind: DocumentKind,
        query_vector: Optional[Sequence[float]],
    ) -> List[RetrievedDoc]:
        if not self.config.enabled:
            return []

        vector = query_vector if query_vector is not None else await self.embed_question(question)
        docs = await self.index.search(
            vector,
            owner_id=data_source_id,
            kind=kind,
            top_k=self.config.top_k,
            threshold=self.config.similarity_threshold,
        )

        logger.info(
            "Documents retrieved",
            data_source_id=data_source_id,
            kind=kind.value,
            count=len(docs),
            top_similarity=round(docs[0].similarity, 4) if docs else None,
            trace_id=current_trace_id(),
        )
        return docs
