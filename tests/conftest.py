"""Shared fixtures: in-memory stand-ins for the cluster and KMS."""
import base64
import copy
from typing import Dict, Optional

import pytest

from kms_secrets.secrets.domains.errors import AlreadyExistsError, ConflictError, StoreError
from kms_secrets.secrets.domains.kms_client import KMSError
from kms_secrets.secrets.domains.models import API_VERSION, KIND, DerivedSecret, KMSSecret

REGION = "ap-northeast-1"


def encrypt(value: str) -> bytes:
    """Ciphertext understood by FakeKMS."""
    return b"enc:" + value.encode("utf-8")


def kmssecret_object(name="test-secret", namespace="default", data=None, region=REGION,
                     labels=None, annotations=None, secrets_sum=None, uid="uid-1234"):
    """Build a KMSSecret as the Kubernetes API returns it (encryptedData base64-encoded)."""
    obj = {
        "apiVersion": API_VERSION,
        "kind": KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": uid,
            "resourceVersion": "1",
        },
        "spec": {
            "region": region,
            "encryptedData": {
                key: base64.b64encode(encrypt(value)).decode("ascii")
                for key, value in (data or {}).items()
            },
            "template": {
                "metadata": {
                    "labels": labels or {},
                    "annotations": annotations or {},
                }
            },
        },
    }
    if secrets_sum is not None:
        obj["status"] = {"secretsSum": secrets_sum}
    return obj


class FakeKMS:
    """Decrypts b"enc:<plaintext>"; keys listed in `fail_on` raise KMSError."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()

    def decrypt(self, region: str, ciphertext: bytes) -> bytes:
        self.calls.append((region, ciphertext))
        if ciphertext in self.fail_on or not ciphertext.startswith(b"enc:"):
            raise KMSError("AccessDeniedException: not allowed")
        return ciphertext[len(b"enc:"):]


class FakeKMSSecretStore:
    def __init__(self):
        self.objects: Dict[str, dict] = {}
        self.updates = []
        self.fail_update: Optional[Exception] = None

    def add(self, obj: dict) -> None:
        meta = obj["metadata"]
        self.objects[f"{meta['namespace']}/{meta['name']}"] = copy.deepcopy(obj)

    def get(self, namespace: str, name: str) -> Optional[KMSSecret]:
        obj = self.objects.get(f"{namespace}/{name}")
        return KMSSecret.from_dict(obj) if obj is not None else None

    def update(self, kmssecret: KMSSecret) -> KMSSecret:
        if self.fail_update is not None:
            raise self.fail_update
        current = self.objects.get(kmssecret.identity)
        body = kmssecret.to_dict()
        if current is not None and current["metadata"].get("resourceVersion") != body["metadata"].get("resourceVersion"):
            raise ConflictError("update KMSSecret", kmssecret.identity, "Conflict", 409)
        body["metadata"]["resourceVersion"] = str(int(body["metadata"].get("resourceVersion") or 0) + 1)
        self.objects[kmssecret.identity] = body
        self.updates.append(body)
        return KMSSecret.from_dict(body)

    def secrets_sum(self, namespace: str, name: str) -> str:
        return (self.objects[f"{namespace}/{name}"].get("status") or {}).get("secretsSum", "")


class FakeSecretStore:
    def __init__(self):
        self.secrets: Dict[str, DerivedSecret] = {}
        self.writes = []
        self.fail_get: Optional[Exception] = None
        self.fail_create: Optional[Exception] = None
        self.fail_update: Optional[Exception] = None

    def get(self, namespace: str, name: str) -> Optional[DerivedSecret]:
        if self.fail_get is not None:
            raise self.fail_get
        secret = self.secrets.get(f"{namespace}/{name}")
        return copy.deepcopy(secret)

    def create(self, secret: DerivedSecret) -> DerivedSecret:
        if self.fail_create is not None:
            raise self.fail_create
        if secret.identity in self.secrets:
            raise AlreadyExistsError("create Secret", secret.identity, "AlreadyExists", 409)
        stored = copy.deepcopy(secret)
        stored.resource_version = "1"
        self.secrets[secret.identity] = stored
        self.writes.append(("create", copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    def update(self, secret: DerivedSecret) -> DerivedSecret:
        if self.fail_update is not None:
            raise self.fail_update
        if secret.identity not in self.secrets:
            raise StoreError("update Secret", secret.identity, "NotFound", 404)
        stored = copy.deepcopy(secret)
        stored.resource_version = str(int(secret.resource_version or 0) + 1)
        self.secrets[secret.identity] = stored
        self.writes.append(("update", copy.deepcopy(stored)))
        return copy.deepcopy(stored)


class FakeRecorder:
    def __init__(self):
        self.events = []

    def eventf(self, kmssecret, event_type, reason, message):
        self.events.append((kmssecret.identity, event_type, reason, message))


@pytest.fixture
def kms():
    return FakeKMS()


@pytest.fixture
def kmssecret_store():
    return FakeKMSSecretStore()


@pytest.fixture
def secret_store():
    return FakeSecretStore()


@pytest.fixture
def recorder():
    return FakeRecorder()


@pytest.fixture
def reconciler(kmssecret_store, secret_store, kms, recorder):
    from kms_secrets.secrets.workflows.reconcile import KMSSecretReconciler

    return KMSSecretReconciler(
        kmssecrets=kmssecret_store,
        secrets=secret_store,
        decryptor=kms,
        recorder=recorder,
    )
