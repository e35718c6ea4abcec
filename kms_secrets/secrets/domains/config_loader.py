"""Configuration loader for kms-secrets."""
import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .preferences import get_preference

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "KMS_SECRETS_CONFIG"
CONFIG_FILENAME = "config.yml"

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "kubernetes": {
        "in_cluster": False,
        "context": None,
    },
    "aws": {
        "profile": None,
    },
    "operator": {
        "namespace": None,
        "retry_delay": 10,
        "max_workers": 4,
        "events": True,
    },
}

# (section, key) -> accepted types
_TYPES = {
    ("kubernetes", "in_cluster"): (bool,),
    ("kubernetes", "context"): (str, type(None)),
    ("aws", "profile"): (str, type(None)),
    ("operator", "namespace"): (str, type(None)),
    ("operator", "retry_delay"): (int, float),
    ("operator", "max_workers"): (int,),
    ("operator", "events"): (bool,),
}


class ConfigError(Exception):
    """Configuration error exception."""
    pass


def default_config_path() -> Path:
    """Default config location, resolved against the current home directory."""
    return Path.home() / ".config" / "kms-secrets" / CONFIG_FILENAME


def get_config_path() -> Optional[Path]:
    """
    Resolve the config file path.

    Priority order:
    1. KMS_SECRETS_CONFIG environment variable
    2. User preference (stored in ~/.config/kms-secrets/preferences.json)
    3. Default location: ~/.config/kms-secrets/config.yml

    Returns:
        Path to the config file, or None if no file exists

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        config_path = Path(env_path)
        if not config_path.exists():
            raise ConfigError(f"Config file from {CONFIG_ENV_VAR} not found: {config_path}")
        logger.info(f"Using config from {CONFIG_ENV_VAR}: {config_path}")
        return config_path

    config_path_pref = get_preference("config_path")
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.info(f"Using config from preference: {config_path}")
            return config_path
        logger.warning(f"Config path from preference doesn't exist: {config_path}")

    default_config = default_config_path()
    if default_config.exists():
        logger.info(f"Using default config location: {default_config}")
        return default_config

    return None


def _validate(config: Dict[str, Any], config_path: Path) -> None:
    unknown = set(config) - set(DEFAULTS)
    if unknown:
        raise ConfigError(
            f"Unknown section(s) in config at {config_path}: {', '.join(sorted(unknown))}\n"
            f"Allowed sections: {', '.join(DEFAULTS)}"
        )

    for section, values in config.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"Section '{section}' in config at {config_path} must be a mapping")
        for key, value in values.items():
            if key not in DEFAULTS[section]:
                raise ConfigError(f"Unknown key '{section}.{key}' in config at {config_path}")
            expected = _TYPES[(section, key)]
            # bool is an int subclass; don't accept true/false for numeric settings
            if not isinstance(value, expected) or (isinstance(value, bool) and bool not in expected):
                names = " or ".join("null" if t is type(None) else t.__name__ for t in expected)
                raise ConfigError(f"'{section}.{key}' must be {names}, got {value!r}")


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load and validate configuration from YAML file.

    Args:
        config_path: Explicit path; resolved with get_config_path() when omitted

    Returns:
        Dict with 'kubernetes', 'aws' and 'operator' sections, defaults filled in.
        When no config file exists, the defaults alone are returned.

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, or has invalid settings
    """
    if config_path is None:
        config_path = get_config_path()

    config = copy.deepcopy(DEFAULTS)
    if config_path is None:
        logger.info("No config file found, using defaults")
        return config

    try:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}") from e

    if loaded is None:
        logger.warning(f"Config file at {config_path} is empty, using defaults")
        return config

    if not isinstance(loaded, dict):
        raise ConfigError(f"Config at {config_path} must be a YAML mapping")

    _validate(loaded, config_path)

    for section, values in loaded.items():
        config[section].update(values or {})

    logger.info(f"Configuration loaded successfully from {config_path}")
    logger.debug(f"Kubernetes settings: {config['kubernetes']}")
    logger.debug(f"Operator settings: {config['operator']}")

    return config
