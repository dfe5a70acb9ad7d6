"""
Central logging configuration for memcal.

Caps noisy third-party loggers, sets memcal module verbosity and tags every
record with the current request id.
"""

import logging
import os
from typing import Optional

from memcal.api.middleware import get_request_id

LOG_FORMAT = "[%(asctime)s] [%(request_id)s] %(levelname)s - %(name)s - %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Add ``request_id`` to every record for log correlation."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logger levels for memcal.

    Args:
        debug_mode: Enable DEBUG for memcal modules
        force_debug: Override debug mode (None to honor MEMCAL_DEBUG)

    Environment Variables:
        MEMCAL_DEBUG: '1', 'true' or 'yes' forces debug logging
        MEMCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("MEMCAL_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("MEMCAL_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = env_debug or debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    correlation_filter = CorrelationIdFilter()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, CorrelationIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(correlation_filter)

    logger_config: dict[str, int] = {
        "aiohttp.access": logging.WARNING,
        "aiohttp.server": logging.WARNING,
        "aiohttp.web": logging.INFO,
        "httpx": logging.WARNING,
        "httpcore": logging.WARNING,
        "asyncio": logging.WARNING,
        "aiosqlite": logging.WARNING,
        "memcal": logging.DEBUG if final_debug else logging.INFO,
    }
    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger(__name__).debug(
        "Logging configured (debug=%s, root=%s)", final_debug, logging.getLevelName(root_level)
    )
