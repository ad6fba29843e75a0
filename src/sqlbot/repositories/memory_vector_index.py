"""
In-process VectorIndex.

Keeps documents in a dict and scores them with pure-Python cosine
similarity. Used by the "memory" vector backend for local development
and by the unit tests; behaviour matches PgVectorIndex with the cosine
strategy (threshold at the index, ties broken by insertion id).
"""

import asyncio
import math
from typing import Any, Dict, List, Mapping, Sequence

from sqlbot.domain.base_enums import DocumentKind
from sqlbot.domain.entities import VectorDocument
from sqlbot.domain.errors import VectorStoreError
from sqlbot.domain.responses import RetrievedDoc
from sqlbot.repositories.vector_repository import check_search_args
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 when either vector has zero length."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


class InMemoryVectorIndex:
    """Dict-backed VectorIndex with the same contract as PgVectorIndex."""

    def __init__(self, dimension: int):
        self.dimension = dimension
        self._documents: Dict[int, VectorDocument] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def ensure_setup(self) -> None:
        return None

    @property
    def documents(self) -> List[VectorDocument]:
        return list(self._documents.values())

    async def insert(
        self,
        content: str,
        owner_id: int,
        kind: DocumentKind,
        metadata: Mapping[str, Any],
        vector: Sequence[float],
    ) -> int:
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
        async with self._lock:
            return self._insert_locked(documents)

    async def replace_documents(
        self, owner_id: int, kind: DocumentKind, documents: Sequence[VectorDocument]
    ) -> List[int]:
        for document in documents:
            self._check_dimension(document.embedding)
        async with self._lock:
            self._remove_locked(lambda d: d.owner_id == owner_id and d.kind == kind)
            return self._insert_locked(documents)

    async def delete_by_owner_and_kind(self, owner_id: int, kind: DocumentKind) -> int:
        async with self._lock:
            return self._remove_locked(lambda d: d.owner_id == owner_id and d.kind == kind)

    async def delete_by_owner(self, owner_id: int) -> int:
        async with self._lock:
            return self._remove_locked(lambda d: d.owner_id == owner_id)

    async def delete_by_metadata(self, owner_id: int, kind: DocumentKind, key: str, value: Any) -> int:
        async with self._lock:
            return self._remove_locked(
                lambda d: d.owner_id == owner_id
                and d.kind == kind
                and str(d.metadata.get(key)) == str(value)
            )

    async def search(
        self,
        query_vector: Sequence[float],
        owner_id: int,
        kind: DocumentKind,
        top_k: int,
        threshold: float,
    ) -> List[RetrievedDoc]:
        check_search_args(top_k, threshold)
        self._check_dimension(query_vector)

        scored = []
        for doc_id, document in self._documents.items():
            if document.owner_id != owner_id or document.kind != kind:
                continue
            similarity = cosine_similarity(query_vector, document.embedding)
            if similarity >= threshold:
                scored.append((similarity, doc_id, document))

        scored.sort(key=lambda item: (-item[0], item[1]))

        results = [
            RetrievedDoc(
                id=doc_id,
                content=document.content,
                kind=document.kind,
                similarity=similarity,
                metadata=dict(document.metadata),
            )
            for similarity, doc_id, document in scored[:top_k]
        ]

        logger.debug(
            "Similar documents found",
            owner_id=owner_id,
            kind=kind.value,
            result_count=len(results),
            trace_id=current_trace_id(),
        )
        return results

    def _insert_locked(self, documents: Sequence[VectorDocument]) -> List[int]:
        for document in documents:
            self._check_dimension(document.embedding)
        ids: List[int] = []
        for document in documents:
            doc_id = self._next_id
            self._next_id += 1
            self._documents[doc_id] = document.model_copy(update={"id": doc_id})
            ids.append(doc_id)
        return ids

    def _remove_locked(self, predicate) -> int:
        doomed = [doc_id for doc_id, document in self._documents.items() if predicate(document)]
        for doc_id in doomed:
            del self._documents[doc_id]
        return len(doomed)

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise VectorStoreError(
                f"Vector dimension mismatch: expected {self.dimension}, got {len(vector)}"
            )
