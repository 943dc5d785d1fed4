"""Captionarr - template-driven caption animation engine."""

from captionarr.config import VERSION

__version__ = VERSION
