"""AWS KMS client wrapper."""
import logging
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import KMSSecretsError

logger = logging.getLogger(__name__)


class KMSError(KMSSecretsError):
    """A KMS API call failed."""
    pass


class AWSKMSClient:
    """Wrapper around boto3 KMS clients, one per region."""

    def __init__(self, profile: Optional[str] = None):
        self.profile = profile
        self._session = None
        self._clients: Dict[str, object] = {}

    @property
    def session(self) -> boto3.session.Session:
        """Lazy-initialize session (credentials resolve via the standard boto3 chain)."""
        if self._session is None:
            self._session = boto3.session.Session(profile_name=self.profile)
        return self._session

    def client(self, region: str):
        """Return the KMS client for `region`, creating it on first use."""
        if region not in self._clients:
            logger.debug(f"Creating KMS client for region {region}")
            self._clients[region] = self.session.client("kms", region_name=region)
        return self._clients[region]

    def decrypt(self, region: str, ciphertext: bytes) -> bytes:
        """
        Decrypt a KMS ciphertext blob.

        Args:
            region: AWS region holding the key
            ciphertext: Raw ciphertext blob

        Returns:
            Plaintext bytes

        Raises:
            KMSError: If the KMS call fails
        """
        try:
            response = self.client(region).decrypt(CiphertextBlob=ciphertext)
        except (ClientError, BotoCoreError) as e:
            raise KMSError(str(e)) from e
        return response["Plaintext"]

    def encrypt(self, region: str, key_id: str, plaintext: bytes) -> bytes:
        """
        Encrypt plaintext with a KMS key.

        Args:
            region: AWS region holding the key
            key_id: Key ID, ARN or alias
            plaintext: Bytes to encrypt

        Returns:
            Ciphertext blob

        Raises:
            KMSError: If the KMS call fails
        """
        try:
            response = self.client(region).encrypt(KeyId=key_id, Plaintext=plaintext)
        except (ClientError, BotoCoreError) as e:
            raise KMSError(str(e)) from e
        return response["CiphertextBlob"]
