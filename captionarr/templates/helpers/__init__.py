"""Expression helper functions.

Importing this module registers all helpers via decorators.
Each helper file defines functions decorated with @register_helper.
"""

from captionarr.templates.helpers import (  # noqa: F401 - side effect imports
    numeric,
    sequences,
    text,
)
from captionarr.templates.helpers.registry import (
    Category,
    HelperDefinition,
    HelperRegistry,
    get_registry,
    register_helper,
)

__all__ = [
    "Category",
    "HelperDefinition",
    "HelperRegistry",
    "get_registry",
    "register_helper",
]
