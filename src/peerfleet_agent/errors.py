"""Error taxonomy for fleet reconciliation.

Planner, key and convergence errors abort the current pass. Garbage
collection errors are collected per kind and raised together once every
kind has been swept. Nothing here is retried locally: the caller that
dispatched the pass owns retry and backoff.
"""

from typing import List, Optional, Tuple


class PeerfleetError(Exception):
    """Base class for all reconciliation errors."""

    #: Resource (or component) the error is attributed to in status reports.
    resource = "reconciler"


class UnsupportedSoftwareFamily(PeerfleetError):
    resource = "client"

    def __init__(self, family: str):
        super().__init__(f"Client {family} is not supported")
        self.family = family


class InvalidKeyMaterial(PeerfleetError):
    resource = "keys"


class GenesisRenderError(PeerfleetError):
    resource = "genesis"


class StoreError(PeerfleetError):
    """Any failure reported by the cluster resource store."""

    resource = "store"

    def __init__(self, message: str, kind: Optional[str] = None, name: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.name = name


class ConflictError(StoreError):
    """Write rejected because the object changed since it was read."""


class EndpointNotReady(StoreError):
    """A bootnode endpoint exists but has no address assigned yet."""


class NotFound(PeerfleetError):
    """Object is absent. Used internally: absence triggers creation."""

    resource = "store"

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class GarbageCollectionError(PeerfleetError):
    """One or more kinds could not be fully collected."""

    resource = "gc"

    def __init__(self, errors: List[Tuple[str, Exception]], report=None):
        kinds = ", ".join(sorted({kind for kind, _ in errors}))
        super().__init__(f"garbage collection failed for {len(errors)} object(s) ({kinds})")
        self.errors = errors
        self.report = report
