"""Text helpers: case, length, substring and regex tests."""

import re
from functools import lru_cache

from captionarr.templates.helpers.registry import Category, register_helper


def _require_str(value, helper: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{helper}() expects a string, got {type(value).__name__}")
    return value


@lru_cache(maxsize=256)
def _compile(pattern: str, flags: str) -> re.Pattern:
    re_flags = 0
    for flag in flags:
        if flag == "i":
            re_flags |= re.IGNORECASE
        elif flag == "m":
            re_flags |= re.MULTILINE
        else:
            raise ValueError(f"Unsupported regex flag '{flag}'")
    try:
        return re.compile(pattern, re_flags)
    except re.error as e:
        raise ValueError(f"Invalid regular expression '{pattern}': {e}") from None


@register_helper(name="lower", category=Category.TEXT, min_args=1, description="Lowercase text")
def lower(value):
    return _require_str(value, "lower").lower()


@register_helper(name="upper", category=Category.TEXT, min_args=1, description="Uppercase text")
def upper(value):
    return _require_str(value, "upper").upper()


@register_helper(name="trim", category=Category.TEXT, min_args=1, description="Strip surrounding whitespace")
def trim(value):
    return _require_str(value, "trim").strip()


@register_helper(
    name="length",
    category=Category.TEXT,
    min_args=1,
    description="Length of a string or list",
)
def length(value):
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    raise TypeError(f"length() expects a string or list, got {type(value).__name__}")


@register_helper(
    name="contains",
    category=Category.TEXT,
    min_args=2,
    max_args=3,
    description="Substring (or list item) test; optional 'i' for case-insensitive",
)
def contains(haystack, needle, flags=""):
    if isinstance(haystack, (list, tuple)):
        return needle in haystack
    _require_str(haystack, "contains")
    _require_str(needle, "contains")
    if flags == "i":
        return needle.lower() in haystack.lower()
    return needle in haystack


@register_helper(name="startsWith", category=Category.TEXT, min_args=2, description="Prefix test")
def starts_with(value, prefix):
    return _require_str(value, "startsWith").startswith(_require_str(prefix, "startsWith"))


@register_helper(name="endsWith", category=Category.TEXT, min_args=2, description="Suffix test")
def ends_with(value, suffix):
    return _require_str(value, "endsWith").endswith(_require_str(suffix, "endsWith"))


@register_helper(
    name="matches",
    category=Category.TEXT,
    min_args=2,
    max_args=3,
    description="Regular expression search; optional flags 'i', 'm'",
)
def matches(value, pattern, flags=""):
    _require_str(value, "matches")
    _require_str(pattern, "matches")
    _require_str(flags, "matches")
    return _compile(pattern, flags).search(value) is not None
