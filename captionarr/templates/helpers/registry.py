"""Helper function registry.

Helpers are the only callables reachable from expressions. Each helper
module decorates plain functions with @register_helper; importing
captionarr.templates.helpers registers all of them.

Helpers must be pure: they receive evaluated argument values and must not
mutate them.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Category(Enum):
    """Helper categories (for documentation and UI listing)."""

    MATH = "math"
    TEXT = "text"
    COLLECTION = "collection"


@dataclass(frozen=True)
class HelperDefinition:
    """A registered helper function."""

    name: str
    func: Callable[..., Any]
    category: Category
    min_args: int
    max_args: int | None  # None = variadic
    description: str = ""

    def accepts(self, arg_count: int) -> bool:
        if arg_count < self.min_args:
            return False
        return self.max_args is None or arg_count <= self.max_args

    @property
    def arity_text(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return str(self.min_args)
        return f"{self.min_args}-{self.max_args}"


class HelperRegistry:
    """Name -> HelperDefinition lookup."""

    def __init__(self):
        self._helpers: dict[str, HelperDefinition] = {}

    def register(self, definition: HelperDefinition) -> None:
        if definition.name in self._helpers:
            logger.warning(f"Helper '{definition.name}' already registered, overwriting")
        self._helpers[definition.name] = definition

    def get(self, name: str) -> HelperDefinition | None:
        return self._helpers.get(name)

    def has(self, name: str) -> bool:
        return name in self._helpers

    def names(self) -> list[str]:
        return sorted(self._helpers)

    def by_category(self, category: Category) -> list[HelperDefinition]:
        return [h for h in self._helpers.values() if h.category == category]


_registry = HelperRegistry()


def get_registry() -> HelperRegistry:
    """Get the global helper registry."""
    return _registry


def register_helper(
    name: str,
    category: Category,
    min_args: int,
    max_args: int | None = None,
    variadic: bool = False,
    description: str = "",
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator registering a function as an expression helper.

    Args:
        name: Name used in expressions, e.g. "clamp"
        category: Helper category
        min_args: Minimum argument count
        max_args: Maximum argument count (defaults to min_args)
        variadic: Accept any number of arguments >= min_args
        description: Human readable description
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if variadic:
            upper = None
        else:
            upper = min_args if max_args is None else max_args
        _registry.register(
            HelperDefinition(
                name=name,
                func=func,
                category=category,
                min_args=min_args,
                max_args=upper,
                description=description,
            )
        )
        return func

    return decorator
