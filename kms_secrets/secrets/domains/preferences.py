"""Preferences manager for kms-secrets.

Persistent user preferences live in the XDG Base Directory location
~/.config/kms-secrets/preferences.json. The only preference used today is
`config_path`, set with `kmssecrets config set-path`.
"""
import json
from pathlib import Path
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

PREFERENCES_DIR = Path.home() / ".config" / "kms-secrets"
PREFERENCES_FILE = PREFERENCES_DIR / "preferences.json"


def _load_preferences() -> Dict[str, Any]:
    """
    Load preferences from JSON file.

    Returns:
        Dictionary of preferences, or empty dict if the file is missing or unreadable
    """
    if not PREFERENCES_FILE.exists():
        return {}

    try:
        with open(PREFERENCES_FILE, 'r') as f:
            preferences = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse preferences file {PREFERENCES_FILE}: {e}")
        return {}
    except OSError as e:
        logger.error(f"Failed to read preferences file {PREFERENCES_FILE}: {e}")
        return {}

    if not isinstance(preferences, dict):
        logger.error(f"Preferences file {PREFERENCES_FILE} does not contain a JSON object")
        return {}
    return preferences


def _save_preferences(preferences: Dict[str, Any]) -> None:
    PREFERENCES_DIR.mkdir(parents=True, exist_ok=True)
    with open(PREFERENCES_FILE, 'w') as f:
        json.dump(preferences, f, indent=2)


def get_preference(key: str) -> Optional[str]:
    """Get preference value by key, or None if unset."""
    return _load_preferences().get(key)


def set_preference(key: str, value: str) -> None:
    preferences = _load_preferences()
    preferences[key] = value
    _save_preferences(preferences)
    logger.info(f"Preference '{key}' set to: {value}")


def clear_preference(key: str) -> None:
    """Remove a preference. Clearing an unset key is a no-op."""
    preferences = _load_preferences()
    if key in preferences:
        del preferences[key]
        _save_preferences(preferences)
        logger.info(f"Preference '{key}' cleared")
    else:
        logger.debug(f"Preference '{key}' not found, nothing to clear")
