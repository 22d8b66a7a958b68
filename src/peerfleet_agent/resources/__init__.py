"""Resource kinds and ownership rules.

A derived resource is the desired shape of one cluster object. Each kind
has a handler that merges that desired shape into the live object:
- Only fields this agent owns are written
- Labels are merged, never replaced (user labels survive)
- Applying the same desired shape twice leaves the object unchanged
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class ResourceKind(str, Enum):
    """Kinds of objects derived for every node."""
    VOLUME = "PersistentVolumeClaim"
    CONFIG = "ConfigMap"
    SECRET = "Secret"
    ENDPOINT = "Service"
    WORKLOAD = "Deployment"


API_VERSIONS = {
    ResourceKind.VOLUME: "v1",
    ResourceKind.CONFIG: "v1",
    ResourceKind.SECRET: "v1",
    ResourceKind.ENDPOINT: "v1",
    ResourceKind.WORKLOAD: "apps/v1",
}

FLEET_API_VERSION = "peerfleet.io/v1alpha1"
FLEET_KIND = "Fleet"


class OperationResult(str, Enum):
    """What a create-or-update call did to the store."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class DerivedResource:
    """Desired state of one object, recomputed every pass."""
    kind: ResourceKind
    name: str
    namespace: str
    labels: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)  # kind-specific owned fields


def new_object(kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
    """Skeleton of an object that does not exist yet."""
    kind = ResourceKind(kind)
    return {
        "apiVersion": API_VERSIONS[kind],
        "kind": kind.value,
        "metadata": {"name": name, "namespace": namespace},
    }


def is_created(obj: Dict[str, Any]) -> bool:
    """True once the store has persisted the object."""
    return bool(obj.get("metadata", {}).get("creationTimestamp"))


def controller_of(obj: Dict[str, Any]):
    for ref in obj.get("metadata", {}).get("ownerReferences", []):
        if ref.get("controller"):
            return ref
    return None


class AlreadyOwnedError(Exception):
    """Object is controlled by some other owner."""


def set_controller_reference(obj: Dict[str, Any], owner_name: str, owner_uid: str) -> None:
    """Mark `obj` as controlled by a fleet.

    The reference drives cascading deletion when the whole fleet goes away.

    Raises:
        AlreadyOwnedError: if another controller already owns the object
    """
    ref = {
        "apiVersion": FLEET_API_VERSION,
        "kind": FLEET_KIND,
        "name": owner_name,
        "uid": owner_uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }
    existing = controller_of(obj)
    if existing is not None and existing.get("uid") != owner_uid:
        raise AlreadyOwnedError(
            f"{obj['kind']} {obj['metadata']['name']} is already owned by "
            f"{existing.get('kind')} {existing.get('name')}"
        )

    refs = obj["metadata"].setdefault("ownerReferences", [])
    for i, current in enumerate(refs):
        if current.get("uid") == owner_uid:
            refs[i] = ref
            return
    refs.append(ref)


class ResourceHandler:
    """Base class for per-kind merge rules.

    Subclasses set `kind` and implement `apply_owned`.
    """

    kind: ResourceKind

    def apply(self, obj: Dict[str, Any], desired: DerivedResource) -> None:
        """Merge `desired` into `obj` in place."""
        creating = not is_created(obj)
        labels = obj["metadata"].setdefault("labels", {})
        labels.update(desired.labels)
        self.apply_owned(obj, desired, creating)

    def apply_owned(self, obj: Dict[str, Any], desired: DerivedResource, creating: bool) -> None:
        raise NotImplementedError

    @staticmethod
    def _copy(value):
        return copy.deepcopy(value)
