"""Input normalization helpers: tags, slugs and loosely typed flags."""
import json
import re
from typing import Any, List, Optional

from errors import ValidationError

_WHITESPACE = re.compile(r"\s+")


def slugify(name: str) -> str:
    """Lowercase the name and replace whitespace runs with hyphens.

    >>> slugify("Hello World")
    'hello-world'
    """
    return _WHITESPACE.sub("-", name.strip().lower())


def _clean(items: List[Any]) -> List[str]:
    tags: List[str] = []
    for item in items:
        if not isinstance(item, str):
            raise ValidationError("Invalid tags", details="Every tag must be a string")
        tag = item.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def normalize_tags(value: Any) -> Optional[List[str]]:
    """Turn the accepted tag shapes into an ordered list of unique strings.

    Accepts a list of strings, a JSON array encoded as a string
    (``'["tech", "video"]'``) or a comma separated string (``"tech, video"``).
    JSON is tried first; strings that do not parse fall back to the comma
    split. ``None`` means "not supplied" and is passed through.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return _clean(list(value))
    if not isinstance(value, str):
        raise ValidationError("Invalid tags", details="Tags must be a list or a string")

    text = value.strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        return _clean(text.split(","))

    if isinstance(parsed, list):
        return _clean(parsed)
    if isinstance(parsed, str):
        return _clean([parsed])
    if text.startswith(("{", "[")):
        raise ValidationError("Invalid tags", details="JSON tags must be an array of strings")
    # bare numbers and literals such as "2024" or "true" are single tags
    return _clean(text.split(","))


def coerce_bool(value: Any) -> Optional[bool]:
    """Accept booleans and the strings "true"/"false" sent by HTML forms"""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "on", "yes"):
            return True
        if lowered in ("false", "0", "off", "no"):
            return False
    raise ValidationError("Invalid boolean value", details=repr(value))
