"""Fleet reconciliation pass.

One pass converges a fleet's cluster objects with its spec:
1. Load the fleet (a missing fleet is a no-op)
2. Record the node count in fleet status
3. For each node, in spec order:
   - plan its resources against the addresses gathered so far
   - converge each resource (volume, config, secret, workload, endpoint)
   - if it is a bootnode, append its address to the book
4. Delete fleet objects the pass did not derive

Any planning or store error in step 3 aborts the pass. Garbage collection
errors are raised only after every kind has been swept.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .converge import ConvergenceExecutor
from .errors import EndpointNotReady, GarbageCollectionError
from .gc import GarbageCollector
from .models import FleetIdentity, FleetSpec, NodeSpec
from .peers import PeerAddressBook
from .planner import NodeResourcePlanner
from .resource_store import ResourceStore
from .resources import OperationResult, ResourceKind

logger = logging.getLogger(__name__)


@dataclass
class NodeReport:
    name: str
    identity: Optional[str]
    peers: Tuple[str, ...]  # bootstrap addresses the node was planned with
    address: Optional[str] = None  # set for bootnodes
    operations: Dict[ResourceKind, OperationResult] = field(default_factory=dict)


@dataclass
class ReconcileReport:
    identity: FleetIdentity
    found: bool = True
    nodes: List[NodeReport] = field(default_factory=list)
    deleted: List[Tuple[ResourceKind, str]] = field(default_factory=list)
    duration_ms: float = 0.0

    def count(self, operation: OperationResult) -> int:
        return sum(1 for n in self.nodes for op in n.operations.values() if op == operation)

    @property
    def writes(self) -> int:
        """Store mutations made by the pass."""
        return self.count(OperationResult.CREATED) + self.count(OperationResult.UPDATED) + len(self.deleted)

    def to_dict(self) -> Dict:
        return {
            "fleet": str(self.identity),
            "found": self.found,
            "created": self.count(OperationResult.CREATED),
            "updated": self.count(OperationResult.UPDATED),
            "unchanged": self.count(OperationResult.UNCHANGED),
            "deleted": [f"{kind.value}/{name}" for kind, name in self.deleted],
            "bootnodes": [n.address for n in self.nodes if n.address],
            "duration_ms": round(self.duration_ms, 1),
        }


class FleetReconciler:
    """Runs reconciliation passes.

    `fleets` is the fleet source: anything with `get_fleet(identity)` and
    `update_status(identity, **fields)` (see fleet_store.FleetStore).
    """

    def __init__(self, fleets, store: ResourceStore, planner: Optional[NodeResourcePlanner] = None):
        self.fleets = fleets
        self.store = store
        self.planner = planner or NodeResourcePlanner()
        self.executor = ConvergenceExecutor(store)
        self.collector = GarbageCollector(store)

    def reconcile(self, identity: FleetIdentity) -> ReconcileReport:
        """Run one pass for a fleet.

        Safe to call speculatively: when nothing changed the pass makes no
        store writes.

        Raises:
            PeerfleetError: any planning, key, store or collection failure
        """
        start_time = time.time()
        fleet = self.fleets.get_fleet(identity)
        if fleet is None:
            logger.info(f"Fleet {identity} not found, nothing to reconcile")
            return ReconcileReport(identity, found=False)

        logger.info(f"Reconciling fleet {identity} ({len(fleet.nodes)} nodes)")
        self.fleets.update_status(identity, nodes_count=len(fleet.nodes))

        report = ReconcileReport(identity)
        book = PeerAddressBook()
        desired: Dict[ResourceKind, Set[str]] = {kind: set() for kind in ResourceKind}

        for node in fleet.nodes:
            node_report = self._reconcile_node(fleet, node, book.snapshot(), desired)
            report.nodes.append(node_report)
            if node.bootnode:
                book.append(node_report.address)

        collected = self.collector.collect(fleet, desired)
        report.deleted = collected.deleted
        report.duration_ms = (time.time() - start_time) * 1000

        if not collected.ok:
            raise GarbageCollectionError(collected.errors, report)

        logger.info(
            f"Reconciled fleet {identity}: {report.count(OperationResult.CREATED)} created, "
            f"{report.count(OperationResult.UPDATED)} updated, {len(report.deleted)} deleted "
            f"({report.duration_ms:.1f}ms)"
        )
        return report

    def _reconcile_node(
        self,
        fleet: FleetSpec,
        node: NodeSpec,
        peers: Tuple[str, ...],
        desired: Dict[ResourceKind, Set[str]],
    ) -> NodeReport:
        derived = self.planner.plan(node, fleet, peers)
        for kind, name in derived.names().items():
            desired[kind].add(name)

        node_report = NodeReport(name=node.name, identity=derived.identity, peers=peers)
        endpoint = None
        for resource in derived.resources():
            result = self.executor.converge(fleet, resource)
            node_report.operations[resource.kind] = result.operation
            if resource.kind == ResourceKind.ENDPOINT:
                endpoint = result.object

        if node.bootnode:
            host = (endpoint or {}).get("spec", {}).get("clusterIP")
            if not host or host == "None":
                raise EndpointNotReady(
                    f"bootnode {node.name} endpoint has no cluster IP yet",
                    kind=ResourceKind.ENDPOINT.value,
                    name=derived.endpoint.name,
                )
            client = self.planner.client_for(node)
            node_report.address = client.peer_address(derived.identity, host, derived.p2p_port)
            logger.debug(f"Bootnode {node.name} address {node_report.address}")

        return node_report
