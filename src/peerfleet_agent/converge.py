"""Convergence executor.

Applies one derived resource against the store:
- Absent: create it, controlled by the fleet
- Present: merge the owned fields, write only if something changed

Store errors are not retried. They propagate and abort the pass; objects
converged before the failure stay as they are for the next pass.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .errors import StoreError
from .models import FleetSpec
from .resource_store import ResourceStore
from .resources import (
    AlreadyOwnedError,
    DerivedResource,
    OperationResult,
    ResourceHandler,
    ResourceKind,
    set_controller_reference,
)
from .resources.config import ConfigBundleHandler, SecretHandler
from .resources.network import EndpointHandler
from .resources.storage import VolumeClaimHandler
from .resources.workload import WorkloadHandler

logger = logging.getLogger(__name__)

HANDLERS: Dict[ResourceKind, ResourceHandler] = {
    handler.kind: handler
    for handler in (
        VolumeClaimHandler(),
        ConfigBundleHandler(),
        SecretHandler(),
        EndpointHandler(),
        WorkloadHandler(),
    )
}


@dataclass
class ConvergeResult:
    kind: ResourceKind
    name: str
    operation: OperationResult
    object: Dict[str, Any]


class ConvergenceExecutor:
    """Create-or-update of derived resources, owned by their fleet."""

    def __init__(self, store: ResourceStore):
        self.store = store

    def converge(self, fleet: FleetSpec, resource: DerivedResource) -> ConvergeResult:
        """Bring the live object named by `resource` in line with it.

        Raises:
            StoreError: the store failed, or the object belongs to another owner
        """
        if not fleet.uid:
            raise StoreError(f"fleet {fleet.identity} has no uid to own resources")
        handler = HANDLERS[resource.kind]

        def mutate(obj: Dict[str, Any]) -> None:
            try:
                set_controller_reference(obj, fleet.name, fleet.uid)
            except AlreadyOwnedError as e:
                raise StoreError(str(e), kind=resource.kind.value, name=resource.name)
            handler.apply(obj, resource)

        try:
            obj, operation = self.store.create_or_update(resource.kind, resource.namespace, resource.name, mutate)
        except StoreError as e:
            logger.error(f"Unable to converge {resource.kind.value} {resource.namespace}/{resource.name}: {e}")
            raise

        if operation != OperationResult.UNCHANGED:
            logger.info(f"{resource.kind.value} {resource.namespace}/{resource.name} {operation.value}")
        else:
            logger.debug(f"{resource.kind.value} {resource.namespace}/{resource.name} unchanged")
        return ConvergeResult(resource.kind, resource.name, operation, obj)
