# ansybl/config.py
"""
Configuration loading.

Three tiers, later ones win:
1. Built-in defaults
2. YAML file (explicit path, else ~/.ansybl/config.yaml if present)
3. Environment variables

The key store secret is never read from the config file, only from
ANSYBL_KEY_SECRET.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.ansybl/config.yaml"

DEFAULT_CONFIG = {
    "keystore": {
        "provider": "file",
        "path": "~/.ansybl/keys",
        "kdf_n": 16384,
    },
    "cache": {
        "ttl_seconds": 3600,
    },
    "logging": {
        "level": "INFO",
    },
}

# env var -> (section, key, converter)
ENV_OVERRIDES = {
    "ANSYBL_KEY_DIR": ("keystore", "path", str),
    "ANSYBL_KEYSTORE_PROVIDER": ("keystore", "provider", str),
    "ANSYBL_LOG_LEVEL": ("logging", "level", str),
    "ANSYBL_CACHE_TTL": ("cache", "ttl_seconds", int),
}

PROVIDERS = ("file", "memory")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised for unreadable or invalid configuration."""
    pass


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in a path."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_file_config(path: Path | str = None) -> Dict[str, Any]:
    """
    Read a YAML config file.

    A missing default file yields an empty dict; a missing explicit file,
    bad YAML, or a non-mapping document raises ConfigError.
    """
    explicit = path is not None
    config_path = expand_path(str(path) if explicit else DEFAULT_CONFIG_PATH)

    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        return {}

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not load config {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_path} must be a mapping")
    logger.debug(f"Loaded config from {config_path}")
    return data


def load_env_overrides(environ: Dict[str, str] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for var, (section, key, convert) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        try:
            overrides.setdefault(section, {})[key] = convert(value)
        except ValueError:
            raise ConfigError(f"Invalid value for {var}: {value!r}")
    return overrides


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check a merged config. Returns it unchanged.

    Raises:
        ConfigError: on an unknown provider, bad log level, or non-positive
            numeric setting
    """
    keystore = config.get("keystore", {})
    if keystore.get("provider") not in PROVIDERS:
        raise ConfigError(
            f"keystore.provider must be one of {', '.join(PROVIDERS)}, got {keystore.get('provider')!r}"
        )
    if not keystore.get("path"):
        raise ConfigError("keystore.path must be set")

    kdf_n = keystore.get("kdf_n")
    # scrypt needs a power of two above 1
    if not isinstance(kdf_n, int) or kdf_n < 2 or kdf_n & (kdf_n - 1):
        raise ConfigError(f"keystore.kdf_n must be a power of two, got {kdf_n!r}")

    ttl = config.get("cache", {}).get("ttl_seconds")
    if not isinstance(ttl, (int, float)) or isinstance(ttl, bool) or ttl <= 0:
        raise ConfigError(f"cache.ttl_seconds must be positive, got {ttl!r}")

    level = str(config.get("logging", {}).get("level", "")).upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}, got {level!r}")

    return config


def load_config(path: Path | str = None, environ: Dict[str, str] = None) -> Dict[str, Any]:
    """Load and validate the merged configuration."""
    config = deep_merge(DEFAULT_CONFIG, load_file_config(path))
    config = deep_merge(config, load_env_overrides(environ))
    return validate_config(config)
