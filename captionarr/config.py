"""Application configuration.

Single source of truth for all configuration values.
Loads from environment variables with .env file support.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Application version - single source of truth
VERSION = "0.3.0"

APP_NAME = "Captionarr"
APP_DESCRIPTION = "Template-driven caption animation engine"

# Load .env file from project root
_PROJECT_ROOT = Path(__file__).parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"
load_dotenv(_ENV_FILE)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration singleton.

    All configuration values should be accessed through this class.
    Values are loaded from environment variables with sensible defaults.
    """

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", str(_PROJECT_ROOT / "logs"))
    LOG_TO_FILE: bool = _env_bool("LOG_TO_FILE", False)

    # Engine caches
    COMPILED_TEMPLATE_CACHE_SIZE: int = int(os.getenv("COMPILED_TEMPLATE_CACHE_SIZE", "128"))
    VARIABLE_CACHE_SIZE: int = int(os.getenv("VARIABLE_CACHE_SIZE", "1024"))

    # Engine defaults
    DEFAULT_CONFIDENCE_THRESHOLD: float = float(os.getenv("DEFAULT_CONFIDENCE_THRESHOLD", "0.5"))
    DEBUG_MODE: bool = _env_bool("DEBUG_MODE", False)

    # API
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "9196"))

    @classmethod
    def reload(cls) -> None:
        """Reload configuration from environment.

        Useful for testing or runtime config changes.
        """
        load_dotenv(_ENV_FILE, override=True)
        cls.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        cls.LOG_DIR = os.getenv("LOG_DIR", str(_PROJECT_ROOT / "logs"))
        cls.LOG_TO_FILE = _env_bool("LOG_TO_FILE", False)
        cls.COMPILED_TEMPLATE_CACHE_SIZE = int(os.getenv("COMPILED_TEMPLATE_CACHE_SIZE", "128"))
        cls.VARIABLE_CACHE_SIZE = int(os.getenv("VARIABLE_CACHE_SIZE", "1024"))
        cls.DEFAULT_CONFIDENCE_THRESHOLD = float(os.getenv("DEFAULT_CONFIDENCE_THRESHOLD", "0.5"))
        cls.DEBUG_MODE = _env_bool("DEBUG_MODE", False)
        cls.API_HOST = os.getenv("API_HOST", "0.0.0.0")
        cls.API_PORT = int(os.getenv("API_PORT", "9196"))
