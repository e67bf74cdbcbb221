"""
Helper Utility Module

This module provides various helper functions used throughout the Community Feed.
"""

from typing import Optional, List, Dict, Any, Iterable
from datetime import datetime, timezone


def safe_get(data: Dict[str, Any], *keys, default: Any = None) -> Any:
    """
    Safely get a value from a nested dictionary.

    Args:
        data: The dictionary to search
        *keys: The keys to follow
        default: Default value if key doesn't exist

    Returns:
        The value at the specified keys or the default value
    """
    for key in keys:
        try:
            data = data[key]
        except (KeyError, TypeError, IndexError):
            return default
    return data


def truncate_text(text: str, max_length: int = 100, add_ellipsis: bool = True) -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: The text to truncate
        max_length: Maximum length
        add_ellipsis: Whether to add an ellipsis if text is truncated

    Returns:
        str: Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    truncated = text[:max_length].rstrip()
    if add_ellipsis:
        truncated += "..."

    return truncated


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as returned by the backend.

    Args:
        value: A datetime, an ISO string (a trailing 'Z' is accepted) or None

    Returns:
        Optional[datetime]: Timezone-aware datetime, or None if the value is empty
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def as_bool(value: Any) -> bool:
    """
    Coerce a flag that may arrive as a string (e.g. from a change payload).

    Args:
        value: A bool, number, string or None

    Returns:
        bool: False for None, 0 and strings such as "false", "0" or ""
    """
    if isinstance(value, str):
        return value.strip().lower() in ("true", "t", "1", "yes")
    return bool(value)


def unique_strings(values: Optional[Iterable[Any]]) -> List[str]:
    """
    Drop empty values and duplicates while keeping first-seen order.

    Args:
        values: Iterable of strings (None is treated as empty)

    Returns:
        List[str]: The cleaned values
    """
    seen = set()
    result = []
    for value in values or []:
        if value is None:
            continue
        text = str(value).strip()
        if text and text not in seen:
            seen.add(text)
            result.append(text)
    return result


def matches_query(query: str, *fields: Any) -> bool:
    """
    Case-insensitive substring match of a query against text or tag fields.

    Args:
        query: The search text
        *fields: Strings or lists of strings to search

    Returns:
        bool: True if any field contains the query
    """
    needle = (query or "").strip().lower()
    if not needle:
        return False
    for field in fields:
        if isinstance(field, (list, tuple, set)):
            if any(needle in str(item).lower() for item in field):
                return True
        elif field and needle in str(field).lower():
            return True
    return False


def filter_posts_by_tags(posts: List[Any], selected_tags: Optional[Iterable[str]]) -> List[Any]:
    """
    Keep posts carrying at least one of the selected tags.

    Args:
        posts: Records with a ``tags`` attribute
        selected_tags: Tags to filter by; empty means no filtering

    Returns:
        List: The matching posts, order preserved
    """
    wanted = set(selected_tags or [])
    if not wanted:
        return list(posts)
    return [post for post in posts if wanted.intersection(post.tags)]
