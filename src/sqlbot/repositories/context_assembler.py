"""
Prompt context assembly for SQL generation.

Pure string building: no I/O, no randomness. The same inputs always
produce the same GenerationContext and the same prompt text.
"""

from typing import Optional, Sequence, Tuple

from sqlbot.config_constants import (
    EXAMPLES_DISABLED_PLACEHOLDER,
    NO_EXAMPLES_PLACEHOLDER,
    NO_GLOSSARY_PLACEHOLDER,
    NO_HISTORY_PLACEHOLDER,
    NO_SCHEMA_PLACEHOLDER,
    SCHEMA_DISABLED_PLACEHOLDER,
    SCHEMA_DOC_SEPARATOR,
)
from sqlbot.domain.base_enums import Dialect, MessageRole
from sqlbot.domain.entities import TermGlossary
from sqlbot.domain.pipeline import GenerationContext, HistoryTurn
from sqlbot.domain.responses import RetrievedDoc
from sqlbot.utils.prompt_loader import get_prompt

_ROLE_PREFIX = {
    MessageRole.USER: "User: ",
    MessageRole.ASSISTANT: "Assistant: ",
}

_DIALECT_NAMES = {
    Dialect.MYSQL: "MySQL",
    Dialect.POSTGRESQL: "PostgreSQL",
}


def dialect_name(dialect: Dialect) -> str:
    return _DIALECT_NAMES.get(dialect, dialect.value)


class ContextAssembler:
    """
    Builds the generation prompt inputs.

    History handling: only the last `history_window` user/assistant turns
    are kept (oldest first). System notes added by the retry loop are
    rendered after the window and are never trimmed.
    """

    def __init__(self, history_window: int = 6):
        self.history_window = history_window

    def schema_context(self, docs: Optional[Sequence[RetrievedDoc]]) -> str:
        """Schema docs joined by a separator; None means retrieval was disabled."""
        if docs is None:
            return SCHEMA_DISABLED_PLACEHOLDER
        if not docs:
            return NO_SCHEMA_PLACEHOLDER
        return SCHEMA_DOC_SEPARATOR.join(doc.content for doc in docs)

    def examples_context(self, docs: Optional[Sequence[RetrievedDoc]]) -> str:
        """'Q: ...\\nSQL: ...' pairs separated by a blank line; None means disabled."""
        if docs is None:
            return EXAMPLES_DISABLED_PLACEHOLDER
        pairs = [
            f"Q: {doc.content}\nSQL: {doc.metadata.get('sql', '')}"
            for doc in docs
        ]
        return "\n\n".join(pairs) if pairs else NO_EXAMPLES_PLACEHOLDER

    def glossary_context(self, terms: Sequence[TermGlossary]) -> str:
        lines = [f"- {term.term}: {term.definition}" for term in terms]
        return "\n".join(lines) if lines else NO_GLOSSARY_PLACEHOLDER

    def history_context(self, history: Sequence[HistoryTurn]) -> str:
        conversation = [turn for turn in history if turn.role != MessageRole.SYSTEM]
        notes = [turn.content for turn in history if turn.role == MessageRole.SYSTEM]

        window = conversation[-self.history_window:] if self.history_window > 0 else []
        rendered = "\n".join(_ROLE_PREFIX[turn.role] + turn.content for turn in window)
        if not rendered:
            rendered = NO_HISTORY_PLACEHOLDER

        if notes:
            rendered = "\n\n".join([rendered, *notes])
        return rendered

    def assemble(
        self,
        question: str,
        schema_docs: Optional[Sequence[RetrievedDoc]],
        example_docs: Optional[Sequence[RetrievedDoc]],
        terms: Sequence[TermGlossary],
        history: Sequence[HistoryTurn] = (),
    ) -> GenerationContext:
        return GenerationContext(
            question=question,
            schema_context=self.schema_context(schema_docs),
            glossary_context=self.glossary_context(terms),
            examples_context=self.examples_context(example_docs),
            history=tuple(history),
        )

    def build_prompt(self, context: GenerationContext, dialect: Dialect) -> Tuple[str, str]:
        """
        Render the sql_generate template.

        Returns:
            Tuple of (system_prompt, user_prompt)
        """
        return get_prompt("sql_generate").render(
            dialect=dialect_name(dialect),
            schema_context=context.schema_context,
            glossary_context=context.glossary_context,
            examples_context=context.examples_context,
            chat_history=self.history_context(context.history),
            question=context.question,
        )
