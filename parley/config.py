"""Configuration loading and saving for Parley.

The ClientConfig record is assembled from three layers, lowest priority
first:
  1. parley/config/defaults.toml (shipped with the package)
  2. ~/.parley/config.env (user settings saved by `parley config set`)
  3. PARLEY_* environment variables (already set in the shell)

OPENAI_API_KEY is honoured as a fallback when no Parley key is set.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from parley.errors import StoreError
from parley.schemas.config import ClientConfig

logger = logging.getLogger(__name__)

# Directory for user-level Parley configuration
PARLEY_HOME = Path.home() / ".parley"
CONFIG_FILE = PARLEY_HOME / "config.env"

_DEFAULTS_FILE = Path(__file__).parent / "config" / "defaults.toml"

# ClientConfig field -> environment/config.env variable name
ENV_KEYS: dict[str, str] = {
    "base_url": "PARLEY_BASE_URL",
    "api_key": "PARLEY_API_KEY",
    "model": "PARLEY_MODEL",
    "provider": "PARLEY_PROVIDER",
    "db_path": "PARLEY_DB_PATH",
    "timeout": "PARLEY_TIMEOUT",
    "system_prompt": "PARLEY_SYSTEM_PROMPT",
}

_FALLBACK_API_KEY_ENV = "OPENAI_API_KEY"


def config_path() -> Path:
    """Location of the per-user settings file."""
    return CONFIG_FILE


def load_defaults(defaults_path: Path | None = None) -> dict[str, object]:
    """Load the [client] table from the packaged defaults TOML.

    Raises:
        FileNotFoundError: If the defaults file does not exist.
    """
    path = defaults_path or _DEFAULTS_FILE
    if not path.exists():
        raise FileNotFoundError(f"Default config not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return dict(raw.get("client", {}))


def _read_env_file(path: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE file into a dict."""
    values: dict[str, str] = {}
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            if key:
                values[key] = value.strip().strip("'\"")
    except OSError:
        logger.debug("Could not read %s", path)
    return values


def load_config(
    config_file: Path | None = None,
    defaults_path: Path | None = None,
) -> ClientConfig:
    """Build the effective ClientConfig from all configuration layers."""
    data = load_defaults(defaults_path)

    path = config_file or CONFIG_FILE
    if path.is_file():
        saved = _read_env_file(path)
        for field, env_var in ENV_KEYS.items():
            if saved.get(env_var):
                data[field] = saved[env_var]
                logger.debug("Loaded %s from %s", env_var, path)

    for field, env_var in ENV_KEYS.items():
        if os.environ.get(env_var):
            data[field] = os.environ[env_var]

    if not data.get("api_key") and os.environ.get(_FALLBACK_API_KEY_ENV):
        data["api_key"] = os.environ[_FALLBACK_API_KEY_ENV]

    return ClientConfig(**data)


def save_config(config: ClientConfig, config_file: Path | None = None) -> Path:
    """Save user settings to ~/.parley/config.env.

    Only non-empty values are written. Returns the path written.

    Raises:
        StoreError: If the directory or file cannot be written.
    """
    path = config_file or CONFIG_FILE

    lines = ["# Parley client settings", "# Saved by `parley config set`", ""]
    for field, env_var in ENV_KEYS.items():
        value = getattr(config, field)
        if value not in ("", None):
            lines.append(f"{env_var}={value}")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as e:
        raise StoreError(f"Could not save settings to {path}: {e}") from e

    # Restrict permissions on Unix (best-effort)
    try:
        path.chmod(0o600)
    except OSError:
        pass

    logger.info("Saved configuration to %s", path)
    return path


def update_config(config: ClientConfig, key: str, value: str) -> ClientConfig:
    """Return a copy of ``config`` with one field changed.

    Raises:
        KeyError: If ``key`` is not a configurable field.
    """
    if key not in ENV_KEYS:
        raise KeyError(key)
    return ClientConfig(**{**config.model_dump(), key: value})
