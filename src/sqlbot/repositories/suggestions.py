"""
Follow-up question suggestions.
"""

import re
from typing import List, Optional

from sqlbot.config import ChatConfig
from sqlbot.config_constants import DEFAULT_SUGGESTIONS
from sqlbot.infrastructure.llm_client import LanguageModelClient
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.prompt_loader import get_prompt
from sqlbot.utils.reply_parser import load_json_payload
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()

_LIST_ITEM_PATTERN = re.compile(r"^(?:[-*]|\d+[.)])\s*(.+)$")


def parse_suggestions(reply: str) -> List[str]:
    """
    Parse a suggestion reply.

    Order of attempts: a JSON array of strings, then list-looking lines
    ("- ", "* ", "1. ") with the prefix stripped, then the generic defaults.
    """
    payload = load_json_payload(reply)
    if isinstance(payload, list):
        questions = [str(item).strip() for item in payload if str(item).strip()]
        if questions:
            return questions

    questions = []
    for line in reply.splitlines():
        match = _LIST_ITEM_PATTERN.match(line.strip())
        if match:
            text = match.group(1).strip().strip('"').strip()
            if text:
                questions.append(text)
    if questions:
        return questions

    logger.warning(
        "Could not parse suggestions, using defaults",
        reply_preview=reply[:200],
        trace_id=current_trace_id(),
    )
    return list(DEFAULT_SUGGESTIONS)


class SuggestionGenerator:
    """
    LLM-backed follow-up questions.

    Raises LLMError when the model call fails; callers treat suggestions
    as optional.
    """

    def __init__(self, llm_client: LanguageModelClient, config: ChatConfig):
        self.llm_client = llm_client
        self.config = config

    async def suggest(self, question: str, sql: Optional[str]) -> List[str]:
        system_prompt, user_prompt = get_prompt("suggest_questions").render(
            count=self.config.max_suggestions,
            question=question,
            sql=sql or "(no SQL)",
        )

        reply = await self.llm_client.complete(
            user_prompt,
            system_prompt=system_prompt,
            temperature=self.config.suggestion_temperature,
        )
        return parse_suggestions(reply)[: self.config.max_suggestions]
