"""Unwrap YAML-framed scalar strings in decrypted payloads."""
from typing import Optional

import yaml


def unwrap_yaml_string(payload: bytes) -> Optional[bytes]:
    """
    Return the inner string of a YAML document whose root is a plain string.

    Tools such as `aws kms encrypt` are often fed values like "--- apikey" or
    "'apikey'". Those decode to b"apikey".

    Args:
        payload: Decrypted bytes

    Returns:
        The unwrapped bytes, or None if the payload is not valid YAML, is not
        UTF-8, fails to construct (e.g. "2023-02-30" or "!!int abc"), or loads
        as something other than a string (a mapping, a list, a number, null)
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return None

    try:
        loaded = yaml.safe_load(text)
    except Exception:
        # Constructors raise ValueError, AttributeError etc. besides YAMLError;
        # any plaintext that does not load is stored as-is.
        return None

    if not isinstance(loaded, str):
        return None

    return loaded.encode("utf-8")


def normalize_value(payload: bytes) -> bytes:
    """Unwrap a YAML string payload; anything else is returned unchanged."""
    unwrapped = unwrap_yaml_string(payload)
    if unwrapped is None:
        return payload
    return unwrapped
