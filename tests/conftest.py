"""
Shared fixtures: in-memory stores, a fleet builder and known node keys.
"""

from typing import Any, Dict, List

import pytest

from peerfleet_agent.models import FleetIdentity, FleetSpec
from peerfleet_agent.reconciler import FleetReconciler
from peerfleet_agent.resource_store import SqliteResourceStore


# secp256k1 private keys 1 and 2 and their uncompressed public keys (X || Y)
KEY_ONE = "0x" + "0" * 63 + "1"
KEY_ONE_ID = (
    "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
    "483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8"
)
KEY_TWO = "0x" + "0" * 63 + "2"
KEY_TWO_ID = (
    "c6047f9441ed7d6d3045406e95c07cd85c778e4b8cef3ca7abac09b95c709ee5"
    "1ae168fea63dc339a3c58419466ceaeef7f632653266d0e1236431a950cfe52a"
)

IPFS_KEY = "CAESQGz0kk0d1dvvbzWo0g3uW4V/JOOmqWM+ySy5pY3KJxT8"
IPFS_PEER_ID = "12D3KooWSb5AnXtkXkDYb8FvXsFnSkFv5yXkX7x2XCRjJ1kwLkaj"

FLEET_UID = "3f0c6a52-5d2b-4a41-9d9e-1c5b6e1a7c01"


class InMemoryFleets:
    """Fleet source holding specs and status in dicts."""

    def __init__(self):
        self.fleets: Dict[FleetIdentity, FleetSpec] = {}
        self.status: Dict[FleetIdentity, Dict[str, Any]] = {}

    def put(self, fleet: FleetSpec) -> None:
        self.fleets[fleet.identity] = fleet

    def get_fleet(self, identity: FleetIdentity):
        return self.fleets.get(identity)

    def revision(self, identity: FleetIdentity):
        return "abc1234def" if identity in self.fleets else None

    def update_status(self, identity: FleetIdentity, **fields) -> bool:
        current = self.status.setdefault(identity, {})
        changed = any(current.get(k) != v for k, v in fields.items())
        current.update(fields)
        return changed


@pytest.fixture
def known_keys() -> Dict[str, str]:
    return {
        "one": KEY_ONE,
        "one_id": KEY_ONE_ID,
        "two": KEY_TWO,
        "two_id": KEY_TWO_ID,
        "ipfs": IPFS_KEY,
        "ipfs_peer_id": IPFS_PEER_ID,
    }


@pytest.fixture
def store():
    resource_store = SqliteResourceStore(":memory:")
    yield resource_store
    resource_store.close()


@pytest.fixture
def fleets() -> InMemoryFleets:
    return InMemoryFleets()


@pytest.fixture
def make_fleet():
    def build(nodes: List[Dict[str, Any]], name: str = "chain", namespace: str = "default", **extra) -> FleetSpec:
        data = {"name": name, "namespace": namespace, "uid": FLEET_UID, "nodes": nodes}
        data.update(extra)
        return FleetSpec.from_dict(data)

    return build


@pytest.fixture
def reconciler(fleets, store) -> FleetReconciler:
    return FleetReconciler(fleets, store)


@pytest.fixture
def three_node_fleet(make_fleet, fleets):
    """geth fleet: n0 and n1 are bootnodes, n2 is a plain member."""
    fleet = make_fleet([
        {"name": "n0", "client": "geth", "bootnode": True, "nodekey": KEY_ONE},
        {"name": "n1", "client": "geth", "bootnode": True, "nodekey": KEY_TWO},
        {"name": "n2", "client": "geth"},
    ])
    fleets.put(fleet)
    return fleet
