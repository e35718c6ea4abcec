"""Content fingerprint used to detect changes in decrypted data."""
import hashlib
from typing import Dict


def shasum_data(data: Dict[str, bytes]) -> str:
    """
    Compute a SHA-256 hex digest over a plaintext mapping.

    The canonical form is the sorted keys joined by "," then ":" then the
    values in the same order joined by ",". {"API_KEY": b"hoge", "PASSWORD": b"fuga"}
    hashes "API_KEY,PASSWORD:hoge,fuga".
    """
    keys = sorted(data)
    raw = b",".join(key.encode("utf-8") for key in keys) + b":" + b",".join(data[key] for key in keys)
    return hashlib.sha256(raw).hexdigest()
