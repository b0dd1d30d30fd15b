"""
Helpers for turning ORM rows and loosely typed request payloads into plain,
JSON-safe Python values.

Request bodies arrive with dates as ISO strings (sometimes with a trailing
"Z"), cached context snapshots store them the same way, and ORM rows hold
naive UTC datetimes. Everything is normalized to naive UTC here.
"""

import math
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import inspect


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a datetime/date/ISO string into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def days_until(value: Any, now: Optional[datetime] = None) -> Optional[int]:
    """Whole days from now until the given date (negative when past)."""
    target = parse_datetime(value)
    if target is None:
        return None
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    # Partial days round up so "later today" still counts as 1 day left
    return math.ceil((target - now).total_seconds() / 86400)


def to_json_value(value: Any) -> Any:
    """Convert UUIDs and datetimes to strings, recursing into containers."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


def serialize_row(row: Any) -> dict[str, Any]:
    """Mapped attributes of an ORM instance as a JSON-safe dict."""
    mapper = inspect(row).mapper
    return {attr.key: to_json_value(getattr(row, attr.key)) for attr in mapper.column_attrs}


def serialize_rows(rows: Iterable[Any]) -> list[dict[str, Any]]:
    return [serialize_row(row) for row in rows]


def to_number(value: Any) -> Optional[float]:
    """Coerce "$12,500", "12500" or 12500 to a float."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def as_list(value: Any) -> list:
    """Lists stay lists, comma-separated strings are split, None is empty."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [v for v in value if v not in (None, "")]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [value]
