"""Deterministic names and labels of node resources.

Every name is a pure function of (fleet name, node name, kind). Re-deriving
a name always yields the same value, which is what lets a pass find the
objects it created on earlier passes.

Names are not unique across fleets of one namespace: fleet "a" with node
"b-c" and fleet "a-b" with node "c" both map to "a-b-c". The fleet that
converges second fails with an "already owned" StoreError and leaves the
first fleet's objects alone.
"""

from typing import Dict

from .resources import ResourceKind

# Suffix appended to "<fleet>-<node>" per kind
KIND_SUFFIXES = {
    ResourceKind.VOLUME: "-data",
    ResourceKind.CONFIG: "-config",
    ResourceKind.SECRET: "-secrets",
    ResourceKind.ENDPOINT: "",
    ResourceKind.WORKLOAD: "",
}

# Mount paths inside node containers
PATH_DATA = "/mnt/data"
PATH_CONFIG = "/mnt/config"
PATH_SECRETS = "/mnt/secrets"


def node_base_name(fleet_name: str, node_name: str) -> str:
    return f"{fleet_name}-{node_name}"


def resource_name(fleet_name: str, node_name: str, kind: ResourceKind) -> str:
    return node_base_name(fleet_name, node_name) + KIND_SUFFIXES[ResourceKind(kind)]


def fleet_labels(fleet_name: str) -> Dict[str, str]:
    """Labels shared by every node resource of a fleet.

    Used as the garbage collection selector and as the anti-affinity match.
    """
    return {"name": "node", "fleet": fleet_name}


def node_labels(fleet_name: str, node_name: str) -> Dict[str, str]:
    labels = fleet_labels(fleet_name)
    labels["instance"] = node_name
    return labels
