"""
Text helpers for LLM and embedding inputs.

Character-based validation keeps inputs within provider limits, and
small sequence/string helpers are shared by the embedding client,
schema sync and chat service.
"""

from typing import Iterator, List, Optional, Sequence, TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """
    Split a sequence into consecutive lists of at most `size` items.

    Example:
        >>> list(chunked([1, 2, 3, 4, 5], 2))
        [[1, 2], [3, 4], [5]]
    """
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def truncate_title(text: str, max_chars: int) -> str:
    """
    Shorten text for use as a session title.

    Text longer than `max_chars` keeps its first `max_chars` characters
    followed by "...".
    """
    text = text.strip()
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class InputValidator:
    """Hard character limits for provider inputs; violations raise ValueError."""

    @staticmethod
    def validate_total_chars(prompt: str, system_prompt: Optional[str] = None, max_chars: int = 0) -> None:
        """Prompt plus system prompt must fit in `max_chars`."""
        total = len(prompt) + len(system_prompt or "")
        if total > max_chars:
            raise ValueError(f"Total input too large: {total} characters, maximum allowed: {max_chars}")

    @staticmethod
    def validate_batch_chars(texts: Sequence[str], max_chars_per_text: int, label: str = "Text in batch") -> None:
        """Every text must be non-blank and at most `max_chars_per_text` long."""
        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise ValueError(f"{label} at index {i} is empty")
            if len(text) > max_chars_per_text:
                raise ValueError(
                    f"{label} at index {i} too large: {len(text)} characters, "
                    f"maximum allowed: {max_chars_per_text}"
                )
