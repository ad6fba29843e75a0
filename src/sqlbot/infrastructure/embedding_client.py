"""
Embedding client for OpenAI-compatible embedding endpoints.

Uses the openai SDK directly: the raw response carries each item's index,
which is needed to restore input order when the provider reorders items.
"""

from typing import List, Optional, Sequence

import openai

from ..config import EmbeddingConfig
from ..config_constants import EMBEDDING_BATCH_LIMIT
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..utils.text_utils import InputValidator, chunked
from ..domain.errors import EmbeddingError


logger = get_module_logger()


class EmbeddingClient:
    """
    Embedding client over the openai SDK.

    Features:
    - Any OpenAI-compatible endpoint (Zhipu embedding-3 by default)
    - Fixed output dimension, checked on every vector
    - Transparent chunking at the provider's 64-item limit
    - Output order always matches input order

    Usage:
        client = EmbeddingClient(config)
        await client.connect()

        vector = await client.embed("orders by month")
        vectors = await client.embed_batch(["Table: orders ...", "Table: customers ..."])

        await client.close()
    """

    def __init__(self, config: EmbeddingConfig, client: Optional[openai.AsyncOpenAI] = None):
        """`client` replaces the SDK client connect() would build; tests pass a stub."""
        self.config = config
        self._client: Optional[openai.AsyncOpenAI] = client
        self._is_connected = client is not None

        logger.info(
            "Embedding client created",
            model=config.model,
            base_url=config.base_url,
            dimension=config.dimension,
            batch_limit=EMBEDDING_BATCH_LIMIT,
        )

    @property
    def dimension(self) -> int:
        return self.config.dimension

    async def connect(self) -> None:
        """
        Build the SDK client.

        No API call is made. Without an API key the client stays disconnected
        and every embedding call raises EmbeddingError.
        """
        if self._is_connected:
            logger.warning("Embedding client already connected")
            return

        trace_id = current_trace_id()

        if not self.config.api_key:
            logger.warning("Embedding API key not configured, embedding calls will fail", trace_id=trace_id)
            return

        try:
            self._client = openai.AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=float(self.config.timeout_seconds),
                max_retries=self.config.max_retries,
            )
            self._is_connected = True
            logger.info("Embedding client ready", model=self.config.model, trace_id=trace_id)

        except Exception as e:
            error_msg = f"Could not build embedding client: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise EmbeddingError(error_msg) from e

    async def close(self) -> None:
        """Close the SDK client; embedding calls fail until connect() runs again."""
        if self._client is not None:
            await self._client.close()
        self._client = None
        self._is_connected = False
        logger.info("Embedding client closed", trace_id=current_trace_id())

    def is_connected(self) -> bool:
        return self._is_connected and self._client is not None

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingError: On missing credential, invalid input or bad payload
        """
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed many texts, returning vectors in input order.

        Inputs beyond the provider's per-request limit are split into
        chunks that are sent one after another.

        Raises:
            EmbeddingError: On missing credential, invalid input or bad payload
        """
        if not texts:
            return []

        client = self._client
        if client is None or not self.is_connected():
            raise EmbeddingError("Embedding client is not configured: missing API key")

        try:
            InputValidator.validate_batch_chars(
                texts,
                max_chars_per_text=self.config.max_input_chars,
                label="Embedding input",
            )
        except ValueError as e:
            raise EmbeddingError(str(e)) from e

        trace_id = current_trace_id()
        logger.info(
            "Generating embeddings",
            text_count=len(texts),
            chunk_count=(len(texts) + EMBEDDING_BATCH_LIMIT - 1) // EMBEDDING_BATCH_LIMIT,
            trace_id=trace_id,
        )

        vectors: List[List[float]] = []
        for chunk in chunked(texts, EMBEDDING_BATCH_LIMIT):
            vectors.extend(await self._embed_chunk(client, chunk))

        logger.info("Embeddings generated successfully", vector_count=len(vectors), trace_id=trace_id)
        return vectors

    async def _embed_chunk(self, client: openai.AsyncOpenAI, chunk: List[str]) -> List[List[float]]:
        """Embed at most EMBEDDING_BATCH_LIMIT texts in one provider call."""
        trace_id = current_trace_id()

        try:
            response = await client.embeddings.create(
                model=self.config.model,
                input=chunk,
                dimensions=self.config.dimension,
            )
        except openai.OpenAIError as e:
            error_msg = f"Embedding request failed: {e}"
            logger.error(error_msg, error_type=type(e).__name__, chunk_size=len(chunk), trace_id=trace_id)
            raise EmbeddingError(error_msg) from e

        data = getattr(response, "data", None)
        if not data:
            raise EmbeddingError("Embedding provider returned an empty payload")
        if len(data) != len(chunk):
            raise EmbeddingError(
                f"Embedding provider returned {len(data)} vectors for {len(chunk)} inputs"
            )

        # Providers may return items out of order; each item carries its input index
        items = sorted(data, key=lambda item: item.index)
        if [item.index for item in items] != list(range(len(chunk))):
            raise EmbeddingError("Embedding payload has missing or duplicate item indexes")

        vectors: List[List[float]] = []
        for item in items:
            vector = list(item.embedding or [])
            if len(vector) != self.config.dimension:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: expected {self.config.dimension}, got {len(vector)}"
                )
            vectors.append(vector)
        return vectors
