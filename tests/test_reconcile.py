"""Tests for the KMSSecret reconciliation pass."""
import pytest

from conftest import encrypt, kmssecret_object
from kms_secrets.secrets.domains.errors import (
    AlreadyExistsError,
    ConflictError,
    DecryptionError,
    ReconcileError,
    StoreError,
)
from kms_secrets.secrets.domains.fingerprint import shasum_data
from kms_secrets.secrets.domains.models import DerivedSecret
from kms_secrets.secrets.workflows.reconcile import KMSSecretReconciler, ReconcileResult

DATA = {"API_KEY": "hoge", "PASSWORD": "fuga"}
SUM = "b6b66b55b6b03c6ee6abc0027095d38a35937eb3e6ff2dc9f2aafa846c704e3b"


class TestCreatePath:
    """A KMSSecret without a Secret gets one."""

    def test_creates_secret_and_records_sum(self, reconciler, kmssecret_store, secret_store):
        kmssecret_store.add(kmssecret_object(data=DATA))

        result = reconciler.reconcile("default", "test-secret")

        assert result == ReconcileResult.CREATED
        secret = secret_store.secrets["default/test-secret"]
        assert secret.data == {"API_KEY": b"hoge", "PASSWORD": b"fuga"}
        assert kmssecret_store.secrets_sum("default", "test-secret") == SUM

    def test_second_pass_performs_no_writes(self, reconciler, kmssecret_store, secret_store):
        kmssecret_store.add(kmssecret_object(data=DATA))
        reconciler.reconcile("default", "test-secret")
        writes, updates = len(secret_store.writes), len(kmssecret_store.updates)

        result = reconciler.reconcile("default", "test-secret")

        assert result == ReconcileResult.UNCHANGED
        assert len(secret_store.writes) == writes
        assert len(kmssecret_store.updates) == updates

    def test_secret_carries_template_metadata_and_owner(self, reconciler, kmssecret_store, secret_store):
        kmssecret_store.add(kmssecret_object(
            data=DATA,
            labels={"secret.h3poteto.dev": "secret"},
            annotations={"note": "generated"},
        ))

        reconciler.reconcile("default", "test-secret")

        secret = secret_store.secrets["default/test-secret"]
        assert secret.labels == {"secret.h3poteto.dev": "secret"}
        assert secret.annotations == {"note": "generated"}
        assert secret.owner_references == [{
            "apiVersion": "secret.h3poteto.dev/v1beta1",
            "kind": "KMSSecret",
            "name": "test-secret",
            "uid": "uid-1234",
            "controller": True,
            "blockOwnerDeletion": True,
        }]

    def test_records_created_event(self, reconciler, kmssecret_store, recorder):
        kmssecret_store.add(kmssecret_object(data=DATA))

        reconciler.reconcile("default", "test-secret")

        assert recorder.events == [("default/test-secret", "Normal", "Created", "Created Secret default/test-secret")]

    def test_empty_encrypted_data(self, reconciler, kmssecret_store, secret_store):
        kmssecret_store.add(kmssecret_object(data={}))

        assert reconciler.reconcile("default", "test-secret") == ReconcileResult.CREATED
        assert secret_store.secrets["default/test-secret"].data == {}
        assert kmssecret_store.secrets_sum("default", "test-secret") == shasum_data({})

    def test_create_race_overwrites_existing_secret(self, reconciler, kmssecret_store, secret_store):
        """A Secret that appears between get and create is updated, then the sum recorded."""
        kmssecret_store.add(kmssecret_object(data=DATA))
        original_get = secret_store.get
        calls = []

        def racing_get(namespace, name):
            calls.append(name)
            if len(calls) == 1:
                # Someone else creates the Secret right after our first get.
                secret_store.secrets["default/test-secret"] = DerivedSecret(
                    name="test-secret", namespace="default", data={"API_KEY": b"stale"}, resource_version="5",
                )
                return None
            return original_get(namespace, name)

        secret_store.get = racing_get

        result = reconciler.reconcile("default", "test-secret")

        assert result == ReconcileResult.CREATED
        assert secret_store.writes[-1][0] == "update"
        assert secret_store.secrets["default/test-secret"].data == {"API_KEY": b"hoge", "PASSWORD": b"fuga"}
        assert kmssecret_store.secrets_sum("default", "test-secret") == SUM


class TestUpdatePath:
    """An existing Secret is rewritten only when the fingerprint changed."""

    def _existing(self, secret_store, data, labels=None):
        secret_store.secrets["default/test-secret"] = DerivedSecret(
            name="test-secret",
            namespace="default",
            data=data,
            labels=labels or {},
            owner_references=[{"kind": "KMSSecret", "uid": "uid-1234", "controller": True}],
            resource_version="7",
        )

    def test_stale_secret_is_updated(self, reconciler, kmssecret_store, secret_store, recorder):
        self._existing(secret_store, {"API_KEY": b"old"})
        kmssecret_store.add(kmssecret_object(data=DATA, secrets_sum=shasum_data({"API_KEY": b"old"})))

        result = reconciler.reconcile("default", "test-secret")

        assert result == ReconcileResult.UPDATED
        assert secret_store.secrets["default/test-secret"].data == {"API_KEY": b"hoge", "PASSWORD": b"fuga"}
        assert kmssecret_store.secrets_sum("default", "test-secret") == SUM
        assert recorder.events[-1][2] == "Updated"

    def test_subsequent_pass_is_noop(self, reconciler, kmssecret_store, secret_store):
        self._existing(secret_store, {"API_KEY": b"old"})
        kmssecret_store.add(kmssecret_object(data=DATA, secrets_sum="stale"))
        reconciler.reconcile("default", "test-secret")
        writes, updates = len(secret_store.writes), len(kmssecret_store.updates)

        assert reconciler.reconcile("default", "test-secret") == ReconcileResult.UNCHANGED
        assert len(secret_store.writes) == writes
        assert len(kmssecret_store.updates) == updates

    def test_matching_sum_means_no_writes(self, reconciler, kmssecret_store, secret_store, recorder):
        self._existing(secret_store, {"API_KEY": b"hoge", "PASSWORD": b"fuga"})
        kmssecret_store.add(kmssecret_object(data=DATA, secrets_sum=SUM))

        assert reconciler.reconcile("default", "test-secret") == ReconcileResult.UNCHANGED
        assert secret_store.writes == []
        assert kmssecret_store.updates == []
        assert recorder.events == []

    def test_update_keeps_existing_labels(self, reconciler, kmssecret_store, secret_store):
        """Template metadata is applied at creation only."""
        self._existing(secret_store, {"API_KEY": b"old"}, labels={"keep": "me"})
        kmssecret_store.add(kmssecret_object(data=DATA, labels={"new": "label"}, secrets_sum="stale"))

        reconciler.reconcile("default", "test-secret")

        assert secret_store.secrets["default/test-secret"].labels == {"keep": "me"}

    def test_missing_sum_triggers_update(self, reconciler, kmssecret_store, secret_store):
        """A Secret written by a pass that crashed before the status write is rewritten idempotently."""
        self._existing(secret_store, {"API_KEY": b"hoge", "PASSWORD": b"fuga"})
        kmssecret_store.add(kmssecret_object(data=DATA))

        assert reconciler.reconcile("default", "test-secret") == ReconcileResult.UPDATED
        assert secret_store.secrets["default/test-secret"].data == {"API_KEY": b"hoge", "PASSWORD": b"fuga"}
        assert kmssecret_store.secrets_sum("default", "test-secret") == SUM


class TestNoOp:

    def test_missing_kmssecret_is_not_an_error(self, reconciler, secret_store, kms):
        assert reconciler.reconcile("default", "gone") == ReconcileResult.NOT_FOUND
        assert kms.calls == []
        assert secret_store.writes == []

    def test_kmssecret_being_deleted_is_skipped(self, reconciler, kmssecret_store, secret_store, kms):
        obj = kmssecret_object(data=DATA)
        obj["metadata"]["deletionTimestamp"] = "2026-01-01T00:00:00Z"
        kmssecret_store.add(obj)

        assert reconciler.reconcile("default", "test-secret") == ReconcileResult.NOT_FOUND
        assert kms.calls == []
        assert secret_store.writes == []


class TestFailures:
    """Every failure surfaces as ReconcileError and leaves secretsSum untouched."""

    def test_partial_decryption_failure_writes_nothing(self, reconciler, kmssecret_store, secret_store, kms):
        kms.fail_on.add(encrypt("fuga"))
        kmssecret_store.add(kmssecret_object(data=DATA, secrets_sum="previous"))

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile("default", "test-secret")

        assert isinstance(exc_info.value.__cause__, DecryptionError)
        assert secret_store.writes == []
        assert kmssecret_store.updates == []
        assert kmssecret_store.secrets_sum("default", "test-secret") == "previous"

    def test_secret_get_failure(self, reconciler, kmssecret_store, secret_store):
        secret_store.fail_get = StoreError("get Secret", "default/test-secret", "Forbidden", 403)
        kmssecret_store.add(kmssecret_object(data=DATA))

        with pytest.raises(ReconcileError):
            reconciler.reconcile("default", "test-secret")

        assert kmssecret_store.updates == []

    def test_create_failure_skips_status_write(self, reconciler, kmssecret_store, secret_store, recorder):
        secret_store.fail_create = StoreError("create Secret", "default/test-secret", "Forbidden", 403)
        kmssecret_store.add(kmssecret_object(data=DATA))

        with pytest.raises(ReconcileError):
            reconciler.reconcile("default", "test-secret")

        assert kmssecret_store.updates == []
        assert recorder.events == []

    def test_update_conflict_skips_status_write(self, reconciler, kmssecret_store, secret_store):
        secret_store.secrets["default/test-secret"] = DerivedSecret(name="test-secret", namespace="default")
        secret_store.fail_update = ConflictError("update Secret", "default/test-secret", "Conflict", 409)
        kmssecret_store.add(kmssecret_object(data=DATA, secrets_sum="previous"))

        with pytest.raises(ReconcileError):
            reconciler.reconcile("default", "test-secret")

        assert kmssecret_store.secrets_sum("default", "test-secret") == "previous"

    def test_status_write_failure_is_repaired_by_next_pass(self, reconciler, kmssecret_store, secret_store):
        """The Secret is written before the status; a failed status write is retried safely."""
        kmssecret_store.add(kmssecret_object(data=DATA))
        kmssecret_store.fail_update = ConflictError("update KMSSecret", "default/test-secret", "Conflict", 409)

        with pytest.raises(ReconcileError):
            reconciler.reconcile("default", "test-secret")

        assert "default/test-secret" in secret_store.secrets
        assert kmssecret_store.secrets_sum("default", "test-secret") == ""

        kmssecret_store.fail_update = None
        assert reconciler.reconcile("default", "test-secret") == ReconcileResult.UPDATED
        assert kmssecret_store.secrets_sum("default", "test-secret") == SUM
        assert reconciler.reconcile("default", "test-secret") == ReconcileResult.UNCHANGED

    def test_already_exists_without_secret_is_reported(self, reconciler, kmssecret_store, secret_store):
        secret_store.fail_create = AlreadyExistsError("create Secret", "default/test-secret", "AlreadyExists", 409)
        kmssecret_store.add(kmssecret_object(data=DATA))

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile("default", "test-secret")

        assert isinstance(exc_info.value.__cause__, AlreadyExistsError)

    def test_error_carries_identity(self, reconciler, kms, kmssecret_store):
        kms.fail_on.add(encrypt("hoge"))
        kmssecret_store.add(kmssecret_object(data=DATA))

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile("default", "test-secret")

        assert exc_info.value.namespace == "default"
        assert exc_info.value.name == "test-secret"


class TestWithoutRecorder:

    def test_events_are_optional(self, kmssecret_store, secret_store, kms):
        reconciler = KMSSecretReconciler(kmssecrets=kmssecret_store, secrets=secret_store, decryptor=kms)
        kmssecret_store.add(kmssecret_object(data=DATA))

        assert reconciler.reconcile("default", "test-secret") == ReconcileResult.CREATED


class TestUnusualPlaintext:

    def test_date_like_value_is_stored_raw(self, reconciler, kmssecret_store, secret_store):
        kmssecret_store.add(kmssecret_object(data={"PASSWORD": "2023-02-30", "TOKEN": "!!int abc"}))

        result = reconciler.reconcile("default", "test-secret")

        assert result == ReconcileResult.CREATED
        assert secret_store.secrets["default/test-secret"].data == {"PASSWORD": b"2023-02-30", "TOKEN": b"!!int abc"}
        assert kmssecret_store.secrets_sum("default", "test-secret") == shasum_data(
            {"PASSWORD": b"2023-02-30", "TOKEN": b"!!int abc"}
        )
