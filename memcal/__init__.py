"""memcal - calendar feed relay that remembers events removed upstream.

The package root stays import-light; server dependencies load inside
``run_server``.
"""

__version__ = "0.1.0"

from typing import Any, Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream colorized output to stderr.

    Honors MEMCAL_DEBUG (truthy: "1", "true", "yes", "on"), which forces
    DEBUG verbosity regardless of the requested level.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("MEMCAL_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # Only the level is colorized
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def _load_config(args: Optional[Any]) -> Any:
    """Build Config from .env, environment and YAML, then apply CLI overrides."""
    from pathlib import Path

    from .config_loader import Config
    from .core.config_manager import ConfigManager

    env_file = getattr(args, "env_file", None)
    manager = ConfigManager(
        env_file_path=Path(env_file) if env_file else None,
        config_file=getattr(args, "config", None),
    )
    overrides = {
        "server_port": getattr(args, "port", None),
        "server_bind": getattr(args, "host", None),
        "database_path": getattr(args, "database", None),
        "sync_interval_seconds": getattr(args, "sync_interval", None),
        "debug": True if getattr(args, "debug", False) else None,
    }
    config: Config = manager.load_full_config(overrides)
    return config


def run_server(args: Optional[Any] = None) -> int:
    """Run the memcal CLI command selected by ``args``.

    Args:
        args: argparse namespace; ``command`` is "serve" (default) or "sync"

    Returns:
        Process exit code
    """
    import logging
    import os

    _init_logging(os.environ.get("MEMCAL_LOG_LEVEL"))
    config = _load_config(args)
    _init_logging(config.log_level)

    from .api.server import start_server, sync_once
    from .core.log_config import configure_logging

    configure_logging(debug_mode=config.debug)
    logger = logging.getLogger(__name__)

    command = getattr(args, "command", None) or "serve"
    if command == "sync":
        logger.info("Running a single sweep against %s", config.database_path)
        return sync_once(config)

    logger.info("Starting memcal %s", __version__)
    start_server(config)
    return 0
