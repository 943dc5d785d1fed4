"""
Logging setup for Captionarr
Console logging always, rotating log files when enabled
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from captionarr.config import Config

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s [%(name)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_initialized = False


def setup_logging(
    log_level: str | None = None,
    log_dir: str | None = None,
    log_to_file: bool | None = None,
) -> None:
    """
    Initialize the logging system. Safe to call more than once.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory to store log files
        log_to_file: Also write rotating log files to log_dir
    """
    global _initialized
    if _initialized:
        return

    level_name = (log_level or Config.LOG_LEVEL).upper()
    level = getattr(logging, level_name, logging.INFO)
    log_dir = log_dir or Config.LOG_DIR
    log_to_file = Config.LOG_TO_FILE if log_to_file is None else log_to_file

    log_format = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(log_format)
    root_logger.addHandler(console_handler)

    if log_to_file:
        os.makedirs(log_dir, exist_ok=True)

        # Main log file handler (rotating)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "captionarr.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
        file_handler.setFormatter(log_format)
        root_logger.addHandler(file_handler)

        # Error log file handler (separate file for errors)
        error_handler = RotatingFileHandler(
            os.path.join(log_dir, "captionarr_errors.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=3,
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(log_format)
        root_logger.addHandler(error_handler)

    # Reduce verbosity of the ASGI server access log
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    _initialized = True
    logging.getLogger(__name__).info(
        f"Logging initialized (level={level_name}, files={'on' if log_to_file else 'off'})"
    )
