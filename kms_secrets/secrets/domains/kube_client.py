"""Kubernetes API access for KMSSecrets, their Secrets and Events."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from .errors import AlreadyExistsError, ConflictError, StoreError
from .models import API_VERSION, GROUP, KIND, PLURAL, VERSION, DerivedSecret, KMSSecret, decode_data, encode_data

logger = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"
COMPONENT = "kms-secrets"


def load_kube_config(in_cluster: bool = False, context: Optional[str] = None) -> None:
    """
    Load cluster credentials for the kubernetes client.

    Args:
        in_cluster: Use the pod's service account instead of a kubeconfig
        context: Optional kubeconfig context
    """
    if in_cluster:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
        return

    config.load_kube_config(context=context)
    logger.info(f"Loaded kubeconfig (context={context or 'current'})")


def _reason(e: Exception) -> str:
    return str(getattr(e, "reason", None) or e)


def _owner_reference_to_dict(ref: client.V1OwnerReference) -> Dict[str, Any]:
    return {
        "apiVersion": ref.api_version,
        "kind": ref.kind,
        "name": ref.name,
        "uid": ref.uid,
        "controller": bool(ref.controller),
        "blockOwnerDeletion": bool(ref.block_owner_deletion),
    }


def _owner_reference_from_dict(ref: Dict[str, Any]) -> client.V1OwnerReference:
    return client.V1OwnerReference(
        api_version=ref["apiVersion"],
        kind=ref["kind"],
        name=ref["name"],
        uid=ref["uid"],
        controller=ref.get("controller"),
        block_owner_deletion=ref.get("blockOwnerDeletion"),
    )


def secret_from_api(obj: client.V1Secret) -> DerivedSecret:
    """Convert a V1Secret into a DerivedSecret."""
    metadata = obj.metadata
    return DerivedSecret(
        name=metadata.name,
        namespace=metadata.namespace,
        data=decode_data(obj.data),
        labels=dict(metadata.labels or {}),
        annotations=dict(metadata.annotations or {}),
        owner_references=[_owner_reference_to_dict(ref) for ref in (metadata.owner_references or [])],
        resource_version=metadata.resource_version,
    )


def secret_to_api(secret: DerivedSecret) -> client.V1Secret:
    """Convert a DerivedSecret into an Opaque V1Secret body."""
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        type="Opaque",
        metadata=client.V1ObjectMeta(
            name=secret.name,
            namespace=secret.namespace,
            labels=secret.labels or None,
            annotations=secret.annotations or None,
            owner_references=[_owner_reference_from_dict(ref) for ref in secret.owner_references] or None,
            resource_version=secret.resource_version,
        ),
        data=encode_data(secret.data),
    )


class KMSSecretStore:
    """Reads KMSSecret resources and writes back their status."""

    def __init__(self, api: Optional[client.CustomObjectsApi] = None):
        self._api = api

    @property
    def api(self) -> client.CustomObjectsApi:
        """Lazy-initialize API client."""
        if self._api is None:
            self._api = client.CustomObjectsApi()
        return self._api

    def get(self, namespace: str, name: str) -> Optional[KMSSecret]:
        """
        Fetch a KMSSecret.

        Returns:
            The KMSSecret, or None if it does not exist

        Raises:
            StoreError: For any API failure other than not-found
        """
        try:
            obj = self.api.get_namespaced_custom_object(
                group=GROUP, version=VERSION, namespace=namespace, plural=PLURAL, name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise StoreError("get KMSSecret", f"{namespace}/{name}", _reason(e), e.status) from e
        except HTTPError as e:
            raise StoreError("get KMSSecret", f"{namespace}/{name}", _reason(e)) from e
        return KMSSecret.from_dict(obj)

    def update(self, kmssecret: KMSSecret) -> KMSSecret:
        """
        Replace a KMSSecret, including status.secretsSum.

        The body carries the resourceVersion that was read, so a concurrent
        modification is rejected instead of overwritten.

        Raises:
            ConflictError: If the object changed since it was read
            StoreError: For any other API failure
        """
        try:
            obj = self.api.replace_namespaced_custom_object(
                group=GROUP, version=VERSION, namespace=kmssecret.namespace, plural=PLURAL,
                name=kmssecret.name, body=kmssecret.to_dict(),
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError("update KMSSecret", kmssecret.identity, _reason(e), e.status) from e
            raise StoreError("update KMSSecret", kmssecret.identity, _reason(e), e.status) from e
        except HTTPError as e:
            raise StoreError("update KMSSecret", kmssecret.identity, _reason(e)) from e
        return KMSSecret.from_dict(obj)


class SecretStore:
    """Reads and writes the Secrets generated from KMSSecrets."""

    def __init__(self, api: Optional[client.CoreV1Api] = None):
        self._api = api

    @property
    def api(self) -> client.CoreV1Api:
        """Lazy-initialize API client."""
        if self._api is None:
            self._api = client.CoreV1Api()
        return self._api

    def get(self, namespace: str, name: str) -> Optional[DerivedSecret]:
        """Fetch a Secret, or None if it does not exist."""
        try:
            obj = self.api.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise StoreError("get Secret", f"{namespace}/{name}", _reason(e), e.status) from e
        except HTTPError as e:
            raise StoreError("get Secret", f"{namespace}/{name}", _reason(e)) from e
        return secret_from_api(obj)

    def create(self, secret: DerivedSecret) -> DerivedSecret:
        """
        Create a Secret.

        Raises:
            AlreadyExistsError: If a Secret with this name already exists
            StoreError: For any other API failure
        """
        try:
            obj = self.api.create_namespaced_secret(namespace=secret.namespace, body=secret_to_api(secret))
        except ApiException as e:
            if e.status == 409:
                raise AlreadyExistsError("create Secret", secret.identity, _reason(e), e.status) from e
            raise StoreError("create Secret", secret.identity, _reason(e), e.status) from e
        except HTTPError as e:
            raise StoreError("create Secret", secret.identity, _reason(e)) from e
        return secret_from_api(obj)

    def update(self, secret: DerivedSecret) -> DerivedSecret:
        """
        Replace a Secret.

        Raises:
            ConflictError: If the Secret changed since it was read
            StoreError: For any other API failure
        """
        try:
            obj = self.api.replace_namespaced_secret(
                name=secret.name, namespace=secret.namespace, body=secret_to_api(secret),
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError("update Secret", secret.identity, _reason(e), e.status) from e
            raise StoreError("update Secret", secret.identity, _reason(e), e.status) from e
        except HTTPError as e:
            raise StoreError("update Secret", secret.identity, _reason(e)) from e
        return secret_from_api(obj)


class EventRecorder:
    """Posts Kubernetes Events about KMSSecrets. Failures are logged, never raised."""

    def __init__(self, api: Optional[client.CoreV1Api] = None, component: str = COMPONENT):
        self._api = api
        self.component = component

    @property
    def api(self) -> client.CoreV1Api:
        """Lazy-initialize API client."""
        if self._api is None:
            self._api = client.CoreV1Api()
        return self._api

    def eventf(self, kmssecret: KMSSecret, event_type: str, reason: str, message: str) -> None:
        now = datetime.now(timezone.utc)
        event = client.CoreV1Event(
            metadata=client.V1ObjectMeta(generate_name=f"{kmssecret.name}.", namespace=kmssecret.namespace),
            involved_object=client.V1ObjectReference(
                api_version=API_VERSION,
                kind=KIND,
                name=kmssecret.name,
                namespace=kmssecret.namespace,
                uid=kmssecret.uid,
            ),
            reason=reason,
            message=message,
            type=event_type,
            source=client.V1EventSource(component=self.component),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )
        try:
            self.api.create_namespaced_event(namespace=kmssecret.namespace, body=event)
        except (ApiException, HTTPError) as e:
            logger.warning(f"Failed to record event {reason} for KMSSecret {kmssecret.identity}: {_reason(e)}")
