"""Numeric helpers: clamp, min/max, rounding, ranges."""

import math

from captionarr.templates.helpers.registry import Category, register_helper


def is_number(value) -> bool:
    """Numbers are int/float; bool is deliberately not a number."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def require_number(value, helper: str):
    if not is_number(value):
        raise TypeError(f"{helper}() expects a number, got {type(value).__name__}")
    return value


def _numbers(values: tuple, helper: str) -> list:
    # min(1, 2, 3) and min([1, 2, 3]) are both accepted
    if len(values) == 1 and isinstance(values[0], (list, tuple)):
        values = tuple(values[0])
    if not values:
        raise ValueError(f"{helper}() of an empty list")
    return [require_number(v, helper) for v in values]


@register_helper(
    name="clamp",
    category=Category.MATH,
    min_args=3,
    description="Limit a value to [low, high]",
)
def clamp(value, low, high):
    require_number(value, "clamp")
    require_number(low, "clamp")
    require_number(high, "clamp")
    if low > high:
        raise ValueError(f"clamp() low bound {low} is greater than high bound {high}")
    return max(low, min(high, value))


@register_helper(
    name="min",
    category=Category.MATH,
    min_args=1,
    variadic=True,
    description="Smallest of the arguments (or of a single list argument)",
)
def minimum(*values):
    return min(_numbers(values, "min"))


@register_helper(
    name="max",
    category=Category.MATH,
    min_args=1,
    variadic=True,
    description="Largest of the arguments (or of a single list argument)",
)
def maximum(*values):
    return max(_numbers(values, "max"))


@register_helper(name="abs", category=Category.MATH, min_args=1, description="Absolute value")
def absolute(value):
    return abs(require_number(value, "abs"))


@register_helper(
    name="round",
    category=Category.MATH,
    min_args=1,
    max_args=2,
    description="Round to N digits (Python rounding, halves to even)",
)
def round_number(value, digits=0):
    require_number(value, "round")
    if not isinstance(digits, int) or isinstance(digits, bool):
        raise TypeError("round() digits must be an integer")
    result = round(value, digits)
    return int(result) if digits == 0 else result


@register_helper(name="floor", category=Category.MATH, min_args=1, description="Round down")
def floor(value):
    return math.floor(require_number(value, "floor"))


@register_helper(name="ceil", category=Category.MATH, min_args=1, description="Round up")
def ceil(value):
    return math.ceil(require_number(value, "ceil"))


@register_helper(
    name="between",
    category=Category.MATH,
    min_args=3,
    description="True if low <= value <= high (inclusive)",
)
def between(value, low, high):
    require_number(value, "between")
    require_number(low, "between")
    require_number(high, "between")
    return low <= value <= high
