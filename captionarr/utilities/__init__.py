"""Shared utilities."""

from captionarr.utilities.logging import setup_logging

__all__ = ["setup_logging"]
