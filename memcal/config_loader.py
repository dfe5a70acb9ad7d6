"""memcal.config_loader

Typed configuration for the memcal server.

- `Config.from_dict` coerces loosely typed values (env strings, YAML scalars)
  and clamps out-of-range settings with a warning.
- `load_config()` reads an optional YAML file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

MIN_SYNC_INTERVAL = 10
MAX_SYNC_INTERVAL = 86400


@dataclass
class Config:
    """Typed configuration for memcal.

    Fields:
        database_path: SQLite file holding feeds, calendars and events
        server_bind: host to bind the HTTP server to
        server_port: port for the HTTP server
        sync_interval_seconds: delay between sweeps (10..86400)
        fetch_timeout: per-request upstream timeout in seconds
        fetch_max_retries: retries after transport errors
        retry_backoff_factor: base of the exponential retry backoff
        machine_id: 16-bit id embedded in generated feed ids
        public_url: externally visible base URL, derived from requests if unset
        log_level: logging level name
        debug: enable DEBUG logging for memcal modules
    """

    database_path: str = "data/memcal.db"
    server_bind: str = "0.0.0.0"  # nosec B104 - service is meant to be reachable
    server_port: int = 8080
    sync_interval_seconds: int = 300
    fetch_timeout: float = 30.0
    fetch_max_retries: int = 2
    retry_backoff_factor: float = 1.5
    machine_id: int = 0
    public_url: Optional[str] = None
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Config:
        """Create Config from a plain mapping, applying defaults and validation."""
        data = data or {}
        defaults = cls()

        def _coerce(key: str, kind: type, default: Any) -> Any:
            raw = data.get(key, default)
            if raw is None:
                return default
            try:
                return kind(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not %s; using default %r", key, raw, kind.__name__, default)
                return default

        interval = _coerce("sync_interval_seconds", int, defaults.sync_interval_seconds)
        if interval < MIN_SYNC_INTERVAL:
            logger.warning("sync_interval_seconds %d below minimum; coercing to %d", interval, MIN_SYNC_INTERVAL)
            interval = MIN_SYNC_INTERVAL
        elif interval > MAX_SYNC_INTERVAL:
            logger.warning("sync_interval_seconds %d above maximum; coercing to %d", interval, MAX_SYNC_INTERVAL)
            interval = MAX_SYNC_INTERVAL

        debug_raw = data.get("debug", False)
        if isinstance(debug_raw, str):
            debug = debug_raw.strip().lower() in ("1", "true", "yes", "on")
        else:
            debug = bool(debug_raw)

        public_url = data.get("public_url")

        return cls(
            database_path=str(data.get("database_path") or defaults.database_path),
            server_bind=str(data.get("server_bind") or defaults.server_bind),
            server_port=_coerce("server_port", int, defaults.server_port),
            sync_interval_seconds=interval,
            fetch_timeout=_coerce("fetch_timeout", float, defaults.fetch_timeout),
            fetch_max_retries=max(0, _coerce("fetch_max_retries", int, defaults.fetch_max_retries)),
            retry_backoff_factor=_coerce("retry_backoff_factor", float, defaults.retry_backoff_factor),
            machine_id=_coerce("machine_id", int, defaults.machine_id),
            public_url=str(public_url).rstrip("/") if public_url else None,
            log_level=str(data.get("log_level") or defaults.log_level).upper(),
            debug=debug,
        )


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load a mapping from a YAML file; a missing file yields an empty mapping.

    Raises:
        ValueError: If the top level of the file is not a mapping
    """
    if not path.exists():
        logger.info("Config file %s not found; using defaults", path)
        return {}

    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping at top level")
    logger.info("Loaded configuration from %s", path)
    return loaded


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from a YAML file and return a Config instance."""
    raw = load_yaml_config(Path(path)) if path else {}
    return Config.from_dict(raw)
