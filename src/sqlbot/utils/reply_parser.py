"""
Parsing of free-form LLM replies.

The SQL generation prompt asks for a JSON object, but models regularly
wrap it in markdown fences, add prose around it, or ignore the format and
answer with a bare ```sql block. Parsing is therefore two-tiered:

1. Structured: read {"success", "sql", "brief"/"message"} from the reply,
   tolerating a fenced block or surrounding text.
2. Extraction: if tier 1 yields no SQL, take the first ```sql fenced
   block, else a bare statement starting with SELECT, cut at its first ';'.

The result is tagged: ParsedReply when SQL was recovered, UnparsedReply
otherwise. Neither tier raises.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


_FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*[ \t]*\n?(.*?)\n?\s*```$", re.DOTALL)
_SQL_BLOCK_PATTERN = re.compile(r"```sql\s*([\s\S]+?)\s*```", re.IGNORECASE)
_BARE_SELECT_PATTERN = re.compile(r"SELECT\b", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedReply:
    """A reply from which SQL was recovered."""

    sql: str
    explanation: Optional[str]
    # "structured", "fenced" or "bare"
    source: str


@dataclass(frozen=True)
class UnparsedReply:
    """A reply without usable SQL; explanation is the model's own text, if any."""

    explanation: Optional[str]


GenerationReply = Union[ParsedReply, UnparsedReply]


def strip_code_fences(text: str) -> str:
    """
    Remove a single surrounding markdown fence.

    Handles ```json ... ```, ``` ... ``` and fences with a trailing newline.
    Text without a surrounding fence is returned stripped.
    """
    cleaned = text.strip()
    match = _FENCE_PATTERN.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def load_json_payload(text: str) -> Any:
    """Parse the reply as JSON after fence stripping; None if it is not JSON."""
    try:
        return json.loads(strip_code_fences(text))
    except (json.JSONDecodeError, TypeError):
        return None


def load_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Find a JSON object in the reply.

    Tries the whole (fence-stripped) reply first, then the span from the
    first '{' to the last '}'.
    """
    payload = load_json_payload(text)
    if isinstance(payload, dict):
        return payload

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def extract_sql_statement(text: str) -> Optional[str]:
    """
    Pull a SQL statement out of free text.

    Prefers the first ```sql fenced block; otherwise accepts text that
    itself starts with the word SELECT, truncated before the first ';'.
    """
    if not text:
        return None

    match = _SQL_BLOCK_PATTERN.search(text)
    if match:
        sql = match.group(1).strip().rstrip(";").strip()
        return sql or None

    stripped = text.strip()
    if _BARE_SELECT_PATTERN.match(stripped):
        terminator = stripped.find(";")
        if terminator != -1:
            stripped = stripped[:terminator]
        return stripped.strip() or None
    return None


def _text_field(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_generation_reply(text: str) -> GenerationReply:
    """
    Parse a SQL generation reply into ParsedReply or UnparsedReply.

    Example:
        >>> parse_generation_reply('{"success": true, "sql": "SELECT 1", "brief": "one"}')
        ParsedReply(sql='SELECT 1', explanation='one', source='structured')
        >>> parse_generation_reply('{"success": false, "message": "No such table"}')
        UnparsedReply(explanation='No such table')
    """
    if not text or not text.strip():
        return UnparsedReply(explanation=None)

    explanation: Optional[str] = None
    data = load_json_object(text)
    if data is not None:
        if data.get("success") is True:
            explanation = _text_field(data, "brief", "message")
            sql = _text_field(data, "sql")
            if sql:
                return ParsedReply(sql=sql.rstrip(";").strip(), explanation=explanation, source="structured")
        else:
            explanation = _text_field(data, "message", "brief")

    sql = extract_sql_statement(text)
    if sql:
        source = "fenced" if _SQL_BLOCK_PATTERN.search(text) else "bare"
        return ParsedReply(sql=sql, explanation=explanation, source=source)

    if explanation is None and data is None:
        explanation = text.strip()
    return UnparsedReply(explanation=explanation)
