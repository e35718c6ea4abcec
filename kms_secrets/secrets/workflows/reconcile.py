"""Reconcile a KMSSecret into the Secret holding its decrypted data."""
import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from ..domains.errors import AlreadyExistsError, KMSSecretsError, ReconcileError
from ..domains.fingerprint import shasum_data
from ..domains.kms_client import AWSKMSClient
from ..domains.kube_client import EVENT_NORMAL, EventRecorder, KMSSecretStore, SecretStore, load_kube_config
from ..domains.models import DerivedSecret, KMSSecret
from .decrypt import Decryptor, decrypt_data

logger = logging.getLogger(__name__)


class ReconcileResult(Enum):
    NOT_FOUND = "not-found"
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class KMSSecretSource(Protocol):
    def get(self, namespace: str, name: str) -> Optional[KMSSecret]: ...
    def update(self, kmssecret: KMSSecret) -> KMSSecret: ...


class SecretTarget(Protocol):
    def get(self, namespace: str, name: str) -> Optional[DerivedSecret]: ...
    def create(self, secret: DerivedSecret) -> DerivedSecret: ...
    def update(self, secret: DerivedSecret) -> DerivedSecret: ...


class Recorder(Protocol):
    def eventf(self, kmssecret: KMSSecret, event_type: str, reason: str, message: str) -> None: ...


class KMSSecretReconciler:
    """
    Keeps a Secret convergent with the KMSSecret of the same namespace/name.

    Each pass re-decrypts the ciphertext, fingerprints the plaintext and
    compares it with status.secretsSum. The Secret is written only when the
    fingerprint changed, and status.secretsSum is recorded only after the
    Secret write succeeded, so an interrupted pass is repaired by the next
    one. Callers must not run two passes for the same identity at once.
    """

    def __init__(
        self,
        kmssecrets: KMSSecretSource,
        secrets: SecretTarget,
        decryptor: Decryptor,
        recorder: Optional[Recorder] = None,
    ):
        self.kmssecrets = kmssecrets
        self.secrets = secrets
        self.decryptor = decryptor
        self.recorder = recorder

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Returns:
            What the pass did

        Raises:
            ReconcileError: On any failure; the whole pass should be retried later
        """
        try:
            return self._reconcile(namespace, name)
        except KMSSecretsError as e:
            logger.error(f"Failed to reconcile KMSSecret {namespace}/{name}: {e}")
            raise ReconcileError(namespace, name, str(e)) from e

    def _reconcile(self, namespace: str, name: str) -> ReconcileResult:
        logger.info(f"Fetching KMSSecret {namespace}/{name}")
        kind = self.kmssecrets.get(namespace, name)
        if kind is None:
            logger.info(f"KMSSecret {namespace}/{name} not found, nothing to do")
            return ReconcileResult.NOT_FOUND
        if kind.deleting:
            logger.info(f"KMSSecret {kind.identity} is being deleted, nothing to do")
            return ReconcileResult.NOT_FOUND

        decrypted = decrypt_data(kind.encrypted_data, kind.region, self.decryptor)
        shasum = shasum_data(decrypted)

        logger.info(f"Checking for an existing Secret for KMSSecret {kind.identity}")
        secret = self.secrets.get(namespace, name)

        if secret is None:
            logger.info(f"Could not find existing Secret for KMSSecret {kind.identity}, creating one")
            self._create_secret(kind, decrypted)
            self._event(kind, "Created", f"Created Secret {kind.identity}")
            logger.info(f"Created Secret {kind.identity}")
            self._record_sum(kind, shasum)
            return ReconcileResult.CREATED

        if kind.secrets_sum == shasum:
            logger.info(f"Secret {kind.identity} is in sync")
            return ReconcileResult.UNCHANGED

        logger.info(f"encryptedData of {kind.identity} changed (old secretsSum={kind.secrets_sum or '<none>'}), updating Secret")
        self._overwrite_secret(kind, secret, decrypted)
        self._event(kind, "Updated", f"Updated Secret {kind.identity}")
        logger.info(f"Updated Secret {kind.identity}")
        self._record_sum(kind, shasum)
        return ReconcileResult.UPDATED

    def _create_secret(self, kind: KMSSecret, decrypted: Dict[str, bytes]) -> None:
        try:
            self.secrets.create(DerivedSecret.for_owner(kind, decrypted))
        except AlreadyExistsError:
            # Created by someone else since our get; write our data over it.
            logger.info(f"Secret {kind.identity} appeared before create, updating it instead")
            existing = self.secrets.get(kind.namespace, kind.name)
            if existing is None:
                raise
            self._overwrite_secret(kind, existing, decrypted)

    def _overwrite_secret(self, kind: KMSSecret, secret: DerivedSecret, decrypted: Dict[str, bytes]) -> None:
        owner = secret.controller_owner()
        if owner is None or owner.get("uid") != kind.uid:
            logger.warning(f"Secret {secret.identity} is not controlled by KMSSecret {kind.identity}, overwriting its data")
        secret.data = dict(decrypted)
        self.secrets.update(secret)

    def _record_sum(self, kind: KMSSecret, shasum: str) -> None:
        kind.secrets_sum = shasum
        self.kmssecrets.update(kind)
        logger.info(f"Updated KMSSecret {kind.identity} status secretsSum={shasum}")

    def _event(self, kind: KMSSecret, reason: str, message: str) -> None:
        if self.recorder is not None:
            self.recorder.eventf(kind, EVENT_NORMAL, reason, message)


def build_reconciler(config: Dict[str, Any]) -> KMSSecretReconciler:
    """
    Wire a reconciler to the cluster and AWS KMS using loaded configuration.

    Args:
        config: Output of config_loader.load_config()
    """
    kube = config["kubernetes"]
    load_kube_config(in_cluster=kube["in_cluster"], context=kube["context"])

    recorder = EventRecorder() if config["operator"]["events"] else None
    return KMSSecretReconciler(
        kmssecrets=KMSSecretStore(),
        secrets=SecretStore(),
        decryptor=AWSKMSClient(profile=config["aws"]["profile"]),
        recorder=recorder,
    )
