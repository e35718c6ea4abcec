"""kopf handlers that schedule reconciliation passes."""
import logging
from typing import Any, Dict, Optional

import kopf

from kms_secrets.secrets.domains.config_loader import load_config
from kms_secrets.secrets.domains.errors import ReconcileError
from kms_secrets.secrets.domains.models import GROUP, KIND, PLURAL, VERSION
from kms_secrets.secrets.workflows.reconcile import KMSSecretReconciler, build_reconciler

logger = logging.getLogger(__name__)

# Populated by configure() when the operator starts.
_state: Dict[str, Any] = {"reconciler": None, "retry_delay": 10}


def get_reconciler() -> KMSSecretReconciler:
    if _state["reconciler"] is None:
        raise RuntimeError("Operator is not configured; configure() has not run")
    return _state["reconciler"]


def kmssecret_owner(meta: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the controller ownerReference pointing at a KMSSecret, if any."""
    for ref in meta.get("ownerReferences") or []:
        if ref.get("kind") == KIND and ref.get("apiVersion", "").startswith(f"{GROUP}/") and ref.get("controller"):
            return ref
    return None


def _owned_by_kmssecret(meta: Dict[str, Any], **_: Any) -> bool:
    return kmssecret_owner(meta) is not None


def run_pass(namespace: str, name: str) -> None:
    """Run one pass, turning failures into retryable kopf errors."""
    try:
        result = get_reconciler().reconcile(namespace, name)
    except ReconcileError as e:
        raise kopf.TemporaryError(str(e), delay=_state["retry_delay"]) from e
    logger.info(f"KMSSecret {namespace}/{name} reconciled: {result.value}")


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Apply config to kopf and build the reconciler."""
    config = load_config()
    operator = config["operator"]

    settings.posting.level = logging.WARNING
    settings.execution.max_workers = operator["max_workers"]
    # Keep kopf's bookkeeping out of status so it never races status.secretsSum
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=GROUP)

    _state["retry_delay"] = operator["retry_delay"]
    _state["reconciler"] = build_reconciler(config)
    logger.info("kms-secrets operator configured")


@kopf.on.resume(GROUP, VERSION, PLURAL)
@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.update(GROUP, VERSION, PLURAL)
def reconcile_kmssecret(namespace: str, name: str, **_: Any) -> None:
    run_pass(namespace, name)


@kopf.on.event("", "v1", "secrets", when=_owned_by_kmssecret)
def secret_event(event: Dict[str, Any], meta: Dict[str, Any], namespace: str, **_: Any) -> None:
    """Recreate a generated Secret when it is deleted while its KMSSecret still exists."""
    if event.get("type") != "DELETED":
        return
    owner = kmssecret_owner(meta)
    logger.info(f"Secret {namespace}/{meta.get('name')} deleted, reconciling KMSSecret {namespace}/{owner['name']}")
    run_pass(namespace, owner["name"])


def run_operator(namespace: Optional[str] = None) -> None:
    """
    Start the operator and block until it exits.

    Args:
        namespace: Watch only this namespace; cluster-wide when None
    """
    logger.info(f"Starting kms-secrets operator ({'namespace ' + namespace if namespace else 'cluster-wide'})")
    if namespace:
        kopf.run(standalone=True, namespaces=[namespace])
    else:
        kopf.run(standalone=True, clusterwide=True)
