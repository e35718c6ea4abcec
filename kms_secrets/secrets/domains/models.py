"""Domain models for KMSSecret resources and the Secrets derived from them."""
import base64
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

GROUP = "secret.h3poteto.dev"
VERSION = "v1beta1"
PLURAL = "kmssecrets"
KIND = "KMSSecret"
API_VERSION = f"{GROUP}/{VERSION}"


def decode_data(data: Optional[Dict[str, str]]) -> Dict[str, bytes]:
    """Decode a Kubernetes []byte map (base64 strings on the wire)."""
    return {key: base64.b64decode(value or "") for key, value in (data or {}).items()}


def encode_data(data: Dict[str, bytes]) -> Dict[str, str]:
    """Encode bytes values the way the Kubernetes API expects them."""
    return {key: base64.b64encode(value).decode("ascii") for key, value in data.items()}


@dataclass
class SecretTemplate:
    """Metadata copied onto the generated Secret."""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass
class KMSSecret:
    """
    Desired state: ciphertexts to decrypt and materialize as a Secret.

    `raw` keeps the object as read from the API so that a status write can
    send it back unchanged apart from status.secretsSum, including the
    resourceVersion used for conflict detection.
    """
    name: str
    namespace: str
    region: str
    encrypted_data: Dict[str, bytes] = field(default_factory=dict)
    template: SecretTemplate = field(default_factory=SecretTemplate)
    secrets_sum: str = ""
    uid: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def identity(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def deleting(self) -> bool:
        return bool((self.raw.get("metadata") or {}).get("deletionTimestamp"))

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "KMSSecret":
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        template_meta = (spec.get("template") or {}).get("metadata") or {}

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            region=spec.get("region", ""),
            encrypted_data=decode_data(spec.get("encryptedData")),
            template=SecretTemplate(
                labels=dict(template_meta.get("labels") or {}),
                annotations=dict(template_meta.get("annotations") or {}),
            ),
            secrets_sum=status.get("secretsSum", "") or "",
            uid=metadata.get("uid"),
            raw=copy.deepcopy(obj),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return the object to send back on update, with the current secretsSum."""
        obj = copy.deepcopy(self.raw) if self.raw else {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": {
                "region": self.region,
                "encryptedData": encode_data(self.encrypted_data),
                "template": {
                    "metadata": {
                        "labels": dict(self.template.labels),
                        "annotations": dict(self.template.annotations),
                    }
                },
            },
        }
        obj.setdefault("status", {})
        obj["status"]["secretsSum"] = self.secrets_sum
        return obj

    def owner_reference(self) -> Dict[str, Any]:
        """Controller reference that lets the garbage collector cascade deletes."""
        return {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }


@dataclass
class DerivedSecret:
    """The Opaque Secret holding decrypted data for one KMSSecret."""
    name: str
    namespace: str
    data: Dict[str, bytes] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    owner_references: List[Dict[str, Any]] = field(default_factory=list)
    resource_version: Optional[str] = None

    @property
    def identity(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def for_owner(cls, owner: KMSSecret, data: Dict[str, bytes]) -> "DerivedSecret":
        """Build the Secret for `owner` from its template metadata and plaintext data."""
        return cls(
            name=owner.name,
            namespace=owner.namespace,
            data=dict(data),
            labels=dict(owner.template.labels),
            annotations=dict(owner.template.annotations),
            owner_references=[owner.owner_reference()],
        )

    def controller_owner(self) -> Optional[Dict[str, Any]]:
        for ref in self.owner_references:
            if ref.get("controller"):
                return ref
        return None
