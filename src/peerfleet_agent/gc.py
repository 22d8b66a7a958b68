"""Garbage collector for resources of removed nodes.

Ownership references take care of whole-fleet teardown, but removing a node
from a fleet leaves the fleet (the owner) in place. Every pass therefore
lists each kind by the fleet's labels and deletes the objects the pass did
not derive.

Kinds are swept independently: a failure while listing or deleting one
kind is recorded and the sweep moves on.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from .errors import NotFound, PeerfleetError
from .models import FleetSpec
from .naming import fleet_labels
from .resource_store import ResourceStore
from .resources import ResourceKind

logger = logging.getLogger(__name__)


@dataclass
class GarbageCollectionReport:
    deleted: List[Tuple[ResourceKind, str]] = field(default_factory=list)
    errors: List[Tuple[str, Exception]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class GarbageCollector:
    def __init__(self, store: ResourceStore):
        self.store = store

    def collect(self, fleet: FleetSpec, desired: Dict[ResourceKind, Set[str]]) -> GarbageCollectionReport:
        """Delete fleet objects whose names are not in `desired`.

        Args:
            fleet: fleet being reconciled
            desired: names derived in this pass, per kind

        Returns:
            report of deleted objects and per-kind errors
        """
        report = GarbageCollectionReport()
        selector = fleet_labels(fleet.name)

        for kind in ResourceKind:
            keep = desired.get(kind, set())
            try:
                existing = self.store.list(kind, fleet.namespace, selector)
            except PeerfleetError as e:
                logger.error(f"Unable to list {kind.value} objects of fleet {fleet.identity}: {e}")
                report.errors.append((kind.value, e))
                continue

            for obj in existing:
                name = obj["metadata"]["name"]
                if name in keep:
                    continue
                logger.info(f"Deleting redundant {kind.value} {fleet.namespace}/{name}")
                try:
                    self.store.delete(kind, fleet.namespace, name)
                except NotFound:
                    logger.debug(f"{kind.value} {fleet.namespace}/{name} already gone")
                    continue
                except PeerfleetError as e:
                    logger.error(f"Unable to delete {kind.value} {fleet.namespace}/{name}: {e}")
                    report.errors.append((kind.value, e))
                    continue
                report.deleted.append((kind, name))

        return report
