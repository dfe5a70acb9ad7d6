"""Configuration management for the memcal server."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from memcal.config_loader import Config, load_yaml_config

logger = logging.getLogger(__name__)

# Environment variable -> config key. Earlier names win.
ENV_KEYS: dict[str, tuple[str, ...]] = {
    "database_path": ("MEMCAL_DATABASE_PATH", "DATABASE_URL"),
    "server_bind": ("MEMCAL_SERVER_BIND",),
    "server_port": ("MEMCAL_SERVER_PORT", "PORT"),
    "sync_interval_seconds": ("MEMCAL_SYNC_INTERVAL", "SYNC_INTERVAL"),
    "fetch_timeout": ("MEMCAL_FETCH_TIMEOUT",),
    "fetch_max_retries": ("MEMCAL_FETCH_MAX_RETRIES",),
    "machine_id": ("MEMCAL_MACHINE_ID",),
    "public_url": ("MEMCAL_PUBLIC_URL",),
    "log_level": ("MEMCAL_LOG_LEVEL",),
    "debug": ("MEMCAL_DEBUG",),
}


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Skips blank lines and ``#`` comments, accepts an optional ``export``
    prefix and strips matching quotes around values.

    Args:
        path: Path to .env file

    Returns:
        Mapping of keys to values; empty if the file does not exist
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :]

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] and val[0] in ("'", '"'):
            val = val[1:-1]
        if key:
            result[key] = val
    return result


def _database_path_from_env(value: str) -> str:
    # DATABASE_URL style values look like "sqlite:data/memcal.db" or "sqlite:///abs.db"
    if value.startswith("sqlite:"):
        value = value[len("sqlite:") :]
        if value.startswith("//"):
            value = value[2:]
    return value


class ConfigManager:
    """Builds configuration from a YAML file, the environment and a .env file."""

    def __init__(self, env_file_path: Optional[Path] = None, config_file: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            env_file_path: .env file to load (defaults to .env in the working directory)
            config_file: Optional YAML file whose values the environment overrides
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"
        self.config_file = config_file

    def load_env_file(self) -> list[str]:
        """Copy .env values into os.environ without overriding existing keys.

        Returns:
            Keys that were set from the file
        """
        parsed = parse_env_file(self.env_file_path)
        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Map recognized environment variables to config keys."""
        cfg: dict[str, Any] = {}
        for key, names in ENV_KEYS.items():
            for name in names:
                value = os.environ.get(name)
                if value:
                    cfg[key] = value
                    break

        if "database_path" in cfg:
            cfg["database_path"] = _database_path_from_env(cfg["database_path"])
        return cfg

    def load_full_config(self, overrides: Optional[dict[str, Any]] = None) -> Config:
        """Load configuration with precedence overrides > environment > YAML file.

        Args:
            overrides: Values such as CLI flags; None entries are ignored
        """
        self.load_env_file()
        raw: dict[str, Any] = {}
        if self.config_file:
            raw.update(load_yaml_config(Path(self.config_file)))
        raw.update(self.build_config_from_env())
        if overrides:
            raw.update({key: value for key, value in overrides.items() if value is not None})
        return Config.from_dict(raw)

