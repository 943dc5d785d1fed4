"""FastAPI dependencies for dependency injection."""

from functools import lru_cache

from captionarr.templates import AnimationSelector


@lru_cache
def get_selector() -> AnimationSelector:
    """Get the process-wide AnimationSelector (shared compiled-template cache)."""
    return AnimationSelector()
