"""
SQL Generation Repository.

Handles LLM-based SQL generation:
- Retrieval of schema and example context (best-effort)
- Prompt building through ContextAssembler
- LLM interaction
- Two-tier reply parsing (structured JSON, then fenced/bare SQL)
"""

from typing import List, Optional, Sequence

from sqlbot.domain.base_enums import Dialect
from sqlbot.domain.errors import EmbeddingError, LLMError, VectorStoreError
from sqlbot.domain.pipeline import GenerationContext, HistoryTurn
from sqlbot.domain.responses import RetrievedDoc, SqlCandidate
from sqlbot.infrastructure.llm_client import LanguageModelClient
from sqlbot.repositories.context_assembler import ContextAssembler
from sqlbot.repositories.retrieval import RetrievalEngine
from sqlbot.repositories.stores import TermGlossaryStore
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.reply_parser import ParsedReply, parse_generation_reply
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()

_PROVIDER_ERRORS = (EmbeddingError, VectorStoreError, LLMError)


class SqlGenerator:
    """
    Repository for LLM-based SQL generation.

    A retrieval failure degrades to the "no context" placeholder; a failure
    of the generation call itself propagates as LLMError.
    """

    def __init__(
        self,
        retrieval: RetrievalEngine,
        glossary: TermGlossaryStore,
        assembler: ContextAssembler,
        llm_client: LanguageModelClient,
    ):
        self.retrieval = retrieval
        self.glossary = glossary
        self.assembler = assembler
        self.llm_client = llm_client

    async def build_context(
        self,
        question: str,
        data_source_id: int,
        history: Sequence[HistoryTurn] = (),
    ) -> GenerationContext:
        """Retrieve grounding documents and glossary terms, then assemble."""
        trace_id = current_trace_id()

        schema_docs: Optional[List[RetrievedDoc]] = None
        example_docs: Optional[List[RetrievedDoc]] = None

        if self.retrieval.enabled:
            try:
                query_vector = await self.retrieval.embed_question(question)
                schema_docs = await self.retrieval.retrieve_schema(question, data_source_id, query_vector)
                example_docs = await self.retrieval.retrieve_examples(question, data_source_id, query_vector)
            except _PROVIDER_ERRORS as e:
                logger.warning(
                    "Retrieval failed, continuing without context",
                    error=str(e),
                    error_type=type(e).__name__,
                    data_source_id=data_source_id,
                    trace_id=trace_id,
                )
                schema_docs, example_docs = [], []
        else:
            logger.info("Retrieval disabled, using placeholder context", trace_id=trace_id)

        terms = await self.glossary.list_for_data_source(data_source_id)

        return self.assembler.assemble(
            question=question,
            schema_docs=schema_docs,
            example_docs=example_docs,
            terms=terms,
            history=history,
        )

    async def generate(
        self,
        question: str,
        data_source_id: int,
        history: Sequence[HistoryTurn] = (),
        dialect: Dialect = Dialect.POSTGRESQL,
    ) -> SqlCandidate:
        """
        Generate SQL for a question.

        Args:
            question: Natural language question
            data_source_id: Data source whose schema/examples ground the prompt
            history: Working history (conversation turns plus retry error notes)
            dialect: Target SQL dialect named in the prompt

        Returns:
            SqlCandidate; success is True iff SQL was recovered

        Raises:
            LLMError: If the completion call fails
        """
        trace_id = current_trace_id()

        context = await self.build_context(question, data_source_id, history)
        system_prompt, user_prompt = self.assembler.build_prompt(context, dialect)

        logger.debug(
            "Calling LLM for SQL generation",
            prompt_length=len(user_prompt),
            history_turns=len(context.history),
            trace_id=trace_id,
        )

        reply = await self.llm_client.complete(user_prompt, system_prompt=system_prompt)
        parsed = parse_generation_reply(reply)

        if isinstance(parsed, ParsedReply):
            logger.info(
                "SQL generated",
                source=parsed.source,
                sql_length=len(parsed.sql),
                trace_id=trace_id,
            )
            return SqlCandidate.of(parsed.sql, parsed.explanation)

        logger.info(
            "LLM reply contained no SQL",
            reply_preview=reply[:200],
            trace_id=trace_id,
        )
        return SqlCandidate.of(None, parsed.explanation)
