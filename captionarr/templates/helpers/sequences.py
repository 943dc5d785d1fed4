"""Collection helpers for transcript-level variables.

Typical use in a template variable:
    mean(pluck(audioData.words, 'confidence'))
"""

from captionarr.templates.context import resolve_field
from captionarr.templates.helpers.numeric import require_number
from captionarr.templates.helpers.registry import Category, register_helper


def _require_list(value, helper: str) -> list | tuple:
    if not isinstance(value, (list, tuple)):
        raise TypeError(f"{helper}() expects a list, got {type(value).__name__}")
    return value


@register_helper(name="count", category=Category.COLLECTION, min_args=1, description="Number of items")
def count(items):
    return len(_require_list(items, "count"))


@register_helper(name="sum", category=Category.COLLECTION, min_args=1, description="Sum of numbers")
def total(items):
    return sum(require_number(v, "sum") for v in _require_list(items, "sum"))


@register_helper(
    name="mean",
    category=Category.COLLECTION,
    min_args=1,
    description="Arithmetic mean of numbers (null for an empty list)",
)
def mean(items):
    values = [require_number(v, "mean") for v in _require_list(items, "mean")]
    if not values:
        return None
    return sum(values) / len(values)


@register_helper(
    name="pluck",
    category=Category.COLLECTION,
    min_args=2,
    description="Field of every item, skipping items without it",
)
def pluck(items, name):
    if not isinstance(name, str):
        raise TypeError("pluck() field name must be a string")
    values = []
    for item in _require_list(items, "pluck"):
        try:
            values.append(resolve_field(item, name))
        except KeyError:
            continue
    return values


@register_helper(name="first", category=Category.COLLECTION, min_args=1, description="First item or null")
def first(items):
    items = _require_list(items, "first")
    return items[0] if items else None


@register_helper(name="last", category=Category.COLLECTION, min_args=1, description="Last item or null")
def last(items):
    items = _require_list(items, "last")
    return items[-1] if items else None
