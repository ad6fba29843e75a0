"""
Collaborator stores: data sources, glossary, examples, sessions, messages.

Each store is a Protocol plus an in-memory implementation. Ids are
assigned monotonically from 1. Messages are append-only.
"""

import asyncio
from typing import Dict, Generic, List, Optional, Protocol, TypeVar

from pydantic import BaseModel

from sqlbot.domain.entities import (
    ChatMessage,
    ChatSession,
    DataSource,
    SqlExample,
    TermGlossary,
    utc_now,
)

M = TypeVar("M", bound=BaseModel)


class DataSourceStore(Protocol):
    async def get(self, data_source_id: int) -> Optional[DataSource]: ...
    async def list(self) -> List[DataSource]: ...
    async def save(self, data_source: DataSource) -> DataSource: ...
    async def delete(self, data_source_id: int) -> bool: ...
    async def mark_synced(self, data_source_id: int) -> None: ...


class TermGlossaryStore(Protocol):
    async def get(self, term_id: int) -> Optional[TermGlossary]: ...
    async def list(self) -> List[TermGlossary]: ...
    async def list_for_data_source(self, data_source_id: int) -> List[TermGlossary]: ...
    async def save(self, term: TermGlossary) -> TermGlossary: ...
    async def delete(self, term_id: int) -> bool: ...


class SqlExampleStore(Protocol):
    async def get(self, example_id: int) -> Optional[SqlExample]: ...
    async def list(self, data_source_id: Optional[int] = None) -> List[SqlExample]: ...
    async def save(self, example: SqlExample) -> SqlExample: ...
    async def delete(self, example_id: int) -> bool: ...


class ChatSessionStore(Protocol):
    async def create(self, session: ChatSession) -> ChatSession: ...
    async def get(self, session_id: int) -> Optional[ChatSession]: ...
    async def list(self) -> List[ChatSession]: ...
    async def rename(self, session_id: int, title: str) -> None: ...
    async def delete(self, session_id: int) -> bool: ...


class ChatMessageStore(Protocol):
    async def append(self, message: ChatMessage) -> ChatMessage: ...
    async def list_for_session(self, session_id: int) -> List[ChatMessage]: ...
    async def delete_for_session(self, session_id: int) -> int: ...


class _InMemoryTable(Generic[M]):
    """Id-keyed rows with monotonically increasing ids."""

    def __init__(self) -> None:
        self._rows: Dict[int, M] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def get(self, row_id: int) -> Optional[M]:
        return self._rows.get(row_id)

    async def _all(self) -> List[M]:
        return [self._rows[row_id] for row_id in sorted(self._rows)]

    async def save(self, row: M) -> M:
        """Insert when id is None, otherwise replace the stored row."""
        async with self._lock:
            row_id = getattr(row, "id")
            if row_id is None:
                row_id = self._next_id
                self._next_id += 1
                row = row.model_copy(update={"id": row_id})
            self._rows[row_id] = row
            return row

    async def delete(self, row_id: int) -> bool:
        async with self._lock:
            return self._rows.pop(row_id, None) is not None


class InMemoryDataSourceStore(_InMemoryTable[DataSource]):
    async def list(self) -> List[DataSource]:
        return await self._all()

    async def mark_synced(self, data_source_id: int) -> None:
        async with self._lock:
            data_source = self._rows.get(data_source_id)
            if data_source is not None:
                self._rows[data_source_id] = data_source.model_copy(update={"schema_synced_at": utc_now()})


class InMemoryTermGlossaryStore(_InMemoryTable[TermGlossary]):
    async def list(self) -> List[TermGlossary]:
        return await self._all()

    async def list_for_data_source(self, data_source_id: int) -> List[TermGlossary]:
        """Terms of the data source plus global terms."""
        return [
            term for term in await self._all()
            if term.data_source_id is None or term.data_source_id == data_source_id
        ]


class InMemorySqlExampleStore(_InMemoryTable[SqlExample]):
    async def list(self, data_source_id: Optional[int] = None) -> List[SqlExample]:
        examples = await self._all()
        if data_source_id is None:
            return examples
        return [example for example in examples if example.data_source_id == data_source_id]


class InMemoryChatSessionStore(_InMemoryTable[ChatSession]):
    async def create(self, session: ChatSession) -> ChatSession:
        return await self.save(session.model_copy(update={"id": None}))

    async def list(self) -> List[ChatSession]:
        """Newest first."""
        sessions = await self._all()
        return sorted(sessions, key=lambda s: (s.created_at, s.id or 0), reverse=True)

    async def rename(self, session_id: int, title: str) -> None:
        async with self._lock:
            session = self._rows.get(session_id)
            if session is not None:
                self._rows[session_id] = session.model_copy(update={"title": title})


class InMemoryChatMessageStore:
    def __init__(self) -> None:
        self._messages: Dict[int, List[ChatMessage]] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def append(self, message: ChatMessage) -> ChatMessage:
        async with self._lock:
            stored = message.model_copy(update={"id": self._next_id})
            self._next_id += 1
            self._messages.setdefault(message.session_id, []).append(stored)
            return stored

    async def list_for_session(self, session_id: int) -> List[ChatMessage]:
        """Oldest first."""
        return list(self._messages.get(session_id, []))

    async def delete_for_session(self, session_id: int) -> int:
        async with self._lock:
            return len(self._messages.pop(session_id, []))
