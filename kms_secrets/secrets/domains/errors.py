"""Error types raised while reconciling KMSSecret resources."""
from typing import Optional


class KMSSecretsError(Exception):
    """Base class for kms-secrets failures."""
    pass


class DecryptionError(KMSSecretsError):
    """A single encryptedData entry could not be decrypted."""

    def __init__(self, key: str, message: str):
        super().__init__(f"failed to decrypt '{key}': {message}")
        self.key = key


class StoreError(KMSSecretsError):
    """A Kubernetes API call failed for reasons other than not-found."""

    def __init__(self, operation: str, identity: str, message: str, status: Optional[int] = None):
        super().__init__(f"{operation} {identity} failed: {message}")
        self.operation = operation
        self.identity = identity
        self.status = status


class AlreadyExistsError(StoreError):
    """Create was rejected because the object already exists."""
    pass


class ConflictError(StoreError):
    """Update was rejected because the object changed since it was read."""
    pass


class ReconcileError(KMSSecretsError):
    """
    A reconciliation pass failed.

    Every failure is retryable: the caller should re-run the whole pass later.
    The underlying error is available as __cause__.
    """

    def __init__(self, namespace: str, name: str, message: str):
        super().__init__(f"reconcile {namespace}/{name}: {message}")
        self.namespace = namespace
        self.name = name
