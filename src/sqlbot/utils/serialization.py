"""
JSON-safe conversion of values returned by database drivers.

asyncpg and aiomysql hand back Decimal, date/time, UUID and bytes values;
query results are stored on chat messages and sent to the LLM as JSON.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel


def sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert `obj` into JSON-serializable values.

    Decimal -> float, date/time -> ISO string, timedelta -> seconds,
    UUID -> str, bytes -> UTF-8 text (invalid bytes replaced). Containers
    are walked; anything else unknown becomes its str().
    """
    if obj is None or isinstance(obj, (str, bool, int, float)):
        return obj
    if isinstance(obj, dict):
        return {str(key): sanitize_for_json(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [sanitize_for_json(item) for item in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).decode("utf-8", errors="replace")
    if isinstance(obj, BaseModel):
        return sanitize_for_json(obj.model_dump())
    return str(obj)
