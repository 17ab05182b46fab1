"""
Configuration loader for the transfer engine.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv


logger = logging.getLogger(__name__)

ENV_PREFIX = "DOCTRANSFER_"

# Environment variable -> (dotted config key, converter)
_ENV_OVERRIDES = {
    "EXPORTS_DIR": ("paths.exports_dir", str),
    "TEMP_DIR": ("paths.temp_dir", str),
    "UPLOADS_DIR": ("paths.uploads_dir", str),
    "BATCH_SIZE": ("transfer.batch_size", int),
    "MAX_WORKERS": ("transfer.max_workers", int),
    "MAX_UPLOAD_BYTES": ("uploads.max_bytes", int),
    "SERVER_SELECTION_TIMEOUT_MS": ("store.server_selection_timeout_ms", int),
    "DOWNLOAD_BASE_PATH": ("download.base_path", str),
}

DEFAULT_CONFIG: Dict[str, Any] = {
    "paths": {
        "exports_dir": "./exports",
        "temp_dir": "./temp",
        "uploads_dir": "./uploads",
    },
    "transfer": {
        "batch_size": 100,
        "max_workers": 1,
    },
    "uploads": {
        "max_bytes": 100 * 1024 * 1024,
        "allowed_extensions": [".zip", ".json"],
    },
    "store": {
        "server_selection_timeout_ms": 5000,
    },
    "download": {
        "base_path": "/api/export/download",
    },
}


class TransferConfig:
    """
    Configuration for the transfer engine.

    Loads an optional YAML file over the defaults, then applies
    DOCTRANSFER_* environment overrides (a .env file is honoured).
    """

    def __init__(self, config_path: Optional[Path] = None, load_env_file: bool = True):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
            load_env_file: Whether to read a .env file into the environment first
        """
        self.config_path = Path(config_path) if config_path else None
        if load_env_file:
            load_dotenv()
        self.config = self._default_config()
        if self.config_path:
            _deep_update(self.config, self._load_config())
        self._apply_env_overrides()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        return config or {}

    def _default_config(self) -> Dict[str, Any]:
        """Return default configuration."""
        return copy.deepcopy(DEFAULT_CONFIG)

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        for suffix, (key, convert) in _ENV_OVERRIDES.items():
            raw = os.environ.get(ENV_PREFIX + suffix)
            if raw is None or raw == "":
                continue
            try:
                value = convert(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX + suffix}={raw!r}")
                continue
            self.set(key, value)

    @property
    def exports_dir(self) -> Path:
        return Path(self.get("paths.exports_dir"))

    @property
    def temp_dir(self) -> Path:
        return Path(self.get("paths.temp_dir"))

    @property
    def uploads_dir(self) -> Path:
        return Path(self.get("paths.uploads_dir"))

    @property
    def batch_size(self) -> int:
        return int(self.get("transfer.batch_size", 100))

    @property
    def max_workers(self) -> int:
        return int(self.get("transfer.max_workers", 1))

    @property
    def max_upload_bytes(self) -> int:
        return int(self.get("uploads.max_bytes"))

    @property
    def allowed_extensions(self) -> List[str]:
        return [ext.lower() for ext in self.get("uploads.allowed_extensions", [])]

    @property
    def server_selection_timeout_ms(self) -> int:
        return int(self.get("store.server_selection_timeout_ms", 5000))

    @property
    def download_base_path(self) -> str:
        return self.get("download.base_path").rstrip("/")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dotted key."""
        keys = key.split(".")
        node = self.config
        for k in keys[:-1]:
            node = node.setdefault(k, {})
        node[keys[-1]] = value


def _deep_update(base: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
