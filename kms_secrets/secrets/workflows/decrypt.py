"""Decrypt every encryptedData entry of a KMSSecret."""
import logging
from typing import Dict, Protocol

from ..domains.errors import DecryptionError
from ..domains.kms_client import KMSError
from ..domains.normalizer import unwrap_yaml_string

logger = logging.getLogger(__name__)


class Decryptor(Protocol):
    def decrypt(self, region: str, ciphertext: bytes) -> bytes: ...


def decrypt_data(encrypted_data: Dict[str, bytes], region: str, decryptor: Decryptor) -> Dict[str, bytes]:
    """
    Decrypt and normalize each entry.

    All or nothing: the first entry that fails to decrypt aborts the whole
    step and no partial mapping is returned. Plaintext is not cached.

    Args:
        encrypted_data: Key -> ciphertext blob
        region: KMS region to decrypt against
        decryptor: Object exposing decrypt(region, ciphertext)

    Returns:
        Key -> plaintext bytes

    Raises:
        DecryptionError: If any entry fails to decrypt
    """
    decrypted: Dict[str, bytes] = {}
    for key in sorted(encrypted_data):
        try:
            plain = decryptor.decrypt(region, encrypted_data[key])
        except KMSError as e:
            logger.error(f"Failed to decrypt {key}: {e}")
            raise DecryptionError(key, str(e)) from e

        value = unwrap_yaml_string(plain)
        if value is None:
            logger.debug(f"{key} is not a YAML string, inserting plain text")
            value = plain
        decrypted[key] = value

    return decrypted
