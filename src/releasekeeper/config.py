"""
Read-only configuration provider.

Settings come from an optional YAML file in the platformdirs config location;
anything the file leaves out falls back to platformdirs defaults. Writing the
file back is the responsibility of the surrounding application.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import platformdirs
import yaml

from releasekeeper.constants import (
    APP_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_GITHUB_REPOSITORY,
    DEFAULT_PRODUCT_ID,
    DEFAULT_REQUEST_TIMEOUT,
    GAMES_DIR_NAME,
)
from releasekeeper.exceptions import ConfigurationError
from releasekeeper.log_utils import logger


@dataclass
class LauncherConfig:
    install_dir: str
    cache_dir: str
    keep_downloaded_files: bool = True
    github_token: Optional[str] = None
    github_repository: str = DEFAULT_GITHUB_REPOSITORY
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    product_id: str = DEFAULT_PRODUCT_ID


def get_config_file_path() -> str:
    return os.path.join(platformdirs.user_config_dir(APP_NAME), CONFIG_FILE_NAME)


def default_config() -> LauncherConfig:
    """Build a configuration that only uses platformdirs locations and built-in defaults."""
    return LauncherConfig(
        install_dir=os.path.join(platformdirs.user_data_dir(APP_NAME), GAMES_DIR_NAME),
        cache_dir=platformdirs.user_cache_dir(APP_NAME),
    )


def _expect(raw: Dict[str, Any], key: str, kinds: tuple, config_path: str) -> Any:
    value = raw[key]
    # bool is an int subclass; reject it for numeric keys
    if not isinstance(value, kinds) or (bool not in kinds and isinstance(value, bool)):
        names = "/".join(k.__name__ for k in kinds)
        raise ConfigurationError(
            f"Invalid value for {key} in {config_path}",
            f"expected {names}, got {type(value).__name__}",
        )
    return value


def load_config(path: Optional[str] = None) -> LauncherConfig:
    """
    Load the launcher configuration.

    Parameters:
        path (str | None): Explicit YAML file to read. When omitted, the file named
            CONFIG_FILE_NAME inside platformdirs.user_config_dir("releasekeeper") is used.

    Returns:
        LauncherConfig: Defaults overridden by any keys present in the file. A missing
        file yields pure defaults. GITHUB_TOKEN falls back to the environment variable
        of the same name when the file does not provide one.

    Raises:
        ConfigurationError: If the file cannot be parsed, is not a mapping, or holds a
            value of the wrong type.
    """
    config_path = path or get_config_file_path()
    config = default_config()

    raw: Dict[str, Any] = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Could not read {config_path}", str(e)) from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Configuration in {config_path} must be a mapping",
                f"got {type(loaded).__name__}",
            )
        raw = loaded
        logger.debug(f"Loaded configuration from {config_path}")
    else:
        logger.debug(f"No configuration file at {config_path}; using defaults")

    if "INSTALL_DIR" in raw:
        config.install_dir = os.path.expanduser(
            _expect(raw, "INSTALL_DIR", (str,), config_path)
        )
    if "CACHE_DIR" in raw:
        config.cache_dir = os.path.expanduser(
            _expect(raw, "CACHE_DIR", (str,), config_path)
        )
    if "KEEP_DOWNLOADED_FILES" in raw:
        config.keep_downloaded_files = _expect(
            raw, "KEEP_DOWNLOADED_FILES", (bool,), config_path
        )
    if raw.get("GITHUB_TOKEN") is not None:
        config.github_token = _expect(raw, "GITHUB_TOKEN", (str,), config_path)
    if "GITHUB_REPOSITORY" in raw:
        config.github_repository = _expect(
            raw, "GITHUB_REPOSITORY", (str,), config_path
        )
    if "REQUEST_TIMEOUT" in raw:
        timeout = _expect(raw, "REQUEST_TIMEOUT", (int, float), config_path)
        if timeout <= 0:
            raise ConfigurationError(
                f"Invalid value for REQUEST_TIMEOUT in {config_path}",
                "must be positive",
            )
        config.request_timeout = timeout
    if "PRODUCT_ID" in raw:
        config.product_id = _expect(raw, "PRODUCT_ID", (str,), config_path)

    if not config.github_token:
        env_token = os.environ.get("GITHUB_TOKEN", "").strip()
        config.github_token = env_token or None

    return config
