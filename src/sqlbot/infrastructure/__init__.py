"""
Infrastructure layer for external integrations.

This module contains clients for the application database, the embedding
and chat-completion providers, and the target databases users query.
"""

from .database_client import DatabaseClient
from .embedding_client import EmbeddingClient
from .llm_client import LanguageModelClient, create_llm_client
from .target_database import TargetDatabaseRegistry

__all__ = [
    "DatabaseClient",
    "EmbeddingClient",
    "LanguageModelClient",
    "TargetDatabaseRegistry",
    "create_llm_client",
]
