import pytest

from peerfleet_agent.errors import (
    EndpointNotReady,
    GarbageCollectionError,
    InvalidKeyMaterial,
    StoreError,
    UnsupportedSoftwareFamily,
)
from peerfleet_agent.models import FleetIdentity
from peerfleet_agent.reconciler import FleetReconciler
from peerfleet_agent.resource_store import SqliteResourceStore
from peerfleet_agent.resources import OperationResult, ResourceKind

CHAIN = FleetIdentity("default", "chain")


def node_args(store, workload_name):
    workload = store.get(ResourceKind.WORKLOAD, "default", workload_name)
    return workload["spec"]["template"]["spec"]["containers"][0]["args"]


def live_names(store):
    return {
        (kind, obj["metadata"]["name"])
        for kind in ResourceKind
        for obj in store.list(kind, "default")
    }


class TestBootstrapPropagation:
    def test_three_nodes_two_bootnodes(self, reconciler, store, three_node_fleet, known_keys):
        report = reconciler.reconcile(CHAIN)

        first = f"enode://{known_keys['one_id']}@10.96.0.2:30303"
        second = f"enode://{known_keys['two_id']}@10.96.0.3:30303"
        assert "--bootnodes" not in node_args(store, "chain-n0")
        n1_args = node_args(store, "chain-n1")
        assert n1_args[n1_args.index("--bootnodes") + 1] == first
        n2_args = node_args(store, "chain-n2")
        assert n2_args[n2_args.index("--bootnodes") + 1] == f"{first},{second}"

        assert [n.address for n in report.nodes] == [first, second, None]
        assert report.count(OperationResult.CREATED) == 10

    def test_nodes_see_only_earlier_bootnodes(self, make_fleet, fleets, reconciler, known_keys):
        fleets.put(make_fleet([
            {"name": "b0", "client": "geth", "bootnode": True, "nodekey": known_keys["one"]},
            {"name": "m1", "client": "geth"},
            {"name": "b2", "client": "besu", "bootnode": True, "nodekey": known_keys["two"]},
            {"name": "m3", "client": "besu"},
        ]))

        report = reconciler.reconcile(CHAIN)

        b0, b2 = report.nodes[0].address, report.nodes[2].address
        assert [n.peers for n in report.nodes] == [(), (b0,), (b0,), (b0, b2)]

    def test_ipfs_bootstrap_peers(self, make_fleet, fleets, reconciler, store, known_keys):
        fleets.put(make_fleet([
            {"name": "i0", "client": "ipfs", "bootnode": True,
             "nodekey": known_keys["ipfs"], "peer_id": known_keys["ipfs_peer_id"]},
            {"name": "i1", "client": "ipfs"},
        ]))

        reconciler.reconcile(CHAIN)

        workload = store.get(ResourceKind.WORKLOAD, "default", "chain-i1")
        init = {c["name"]: c for c in workload["spec"]["template"]["spec"]["initContainers"]}
        assert init["add-bootstrap-peers"]["args"] == [
            "bootstrap", "add", f"/ip4/10.96.0.2/tcp/4001/p2p/{known_keys['ipfs_peer_id']}",
        ]


class TestIdempotence:
    def test_second_pass_writes_nothing(self, reconciler, store, three_node_fleet):
        reconciler.reconcile(CHAIN)
        writes = store.writes

        report = reconciler.reconcile(CHAIN)

        assert store.writes == writes
        assert report.writes == 0
        assert report.count(OperationResult.UNCHANGED) == 10

    def test_status_records_node_count(self, reconciler, fleets, three_node_fleet):
        reconciler.reconcile(CHAIN)
        assert fleets.status[CHAIN]["nodes_count"] == 3


class TestShrink:
    def test_removed_nodes_resources_are_deleted(self, reconciler, store, fleets, make_fleet, three_node_fleet, known_keys):
        reconciler.reconcile(CHAIN)
        before = {o["metadata"]["name"]: o["metadata"]["uid"] for o in store.list(ResourceKind.WORKLOAD, "default")}

        fleets.put(make_fleet([{"name": "n0", "client": "geth", "bootnode": True, "nodekey": known_keys["one"]}]))
        report = reconciler.reconcile(CHAIN)

        assert set(report.deleted) == {
            (ResourceKind.VOLUME, "chain-n1-data"),
            (ResourceKind.SECRET, "chain-n1-secrets"),
            (ResourceKind.WORKLOAD, "chain-n1"),
            (ResourceKind.ENDPOINT, "chain-n1"),
            (ResourceKind.VOLUME, "chain-n2-data"),
            (ResourceKind.WORKLOAD, "chain-n2"),
        }
        assert live_names(store) == {
            (ResourceKind.VOLUME, "chain-n0-data"),
            (ResourceKind.SECRET, "chain-n0-secrets"),
            (ResourceKind.WORKLOAD, "chain-n0"),
            (ResourceKind.ENDPOINT, "chain-n0"),
        }
        assert store.get(ResourceKind.WORKLOAD, "default", "chain-n0")["metadata"]["uid"] == before["chain-n0"]

    def test_node_losing_bootnode_flag_loses_endpoint(self, reconciler, store, fleets, make_fleet, known_keys):
        fleets.put(make_fleet([{"name": "n0", "client": "geth", "bootnode": True, "nodekey": known_keys["one"]}]))
        reconciler.reconcile(CHAIN)

        fleets.put(make_fleet([{"name": "n0", "client": "geth", "nodekey": known_keys["one"]}]))
        report = reconciler.reconcile(CHAIN)

        assert report.deleted == [(ResourceKind.ENDPOINT, "chain-n0")]

    def test_other_fleets_untouched(self, reconciler, store, fleets, make_fleet, three_node_fleet):
        fleets.put(make_fleet([{"name": "n0", "client": "geth"}], name="side", uid="side-uid"))
        reconciler.reconcile(FleetIdentity("default", "side"))

        reconciler.reconcile(CHAIN)

        assert (ResourceKind.WORKLOAD, "side-n0") in live_names(store)

    def test_colliding_names_across_fleets(self, reconciler, store, fleets, make_fleet):
        fleets.put(make_fleet([{"name": "b-c", "client": "geth"}], name="a", uid="a-uid"))
        fleets.put(make_fleet([{"name": "c", "client": "geth"}], name="a-b", uid="ab-uid"))
        reconciler.reconcile(FleetIdentity("default", "a"))

        with pytest.raises(StoreError, match="already owned"):
            reconciler.reconcile(FleetIdentity("default", "a-b"))

        workload = store.get(ResourceKind.WORKLOAD, "default", "a-b-c")
        assert workload["metadata"]["ownerReferences"][0]["uid"] == "a-uid"


class TestFailures:
    def test_missing_fleet_is_a_noop(self, reconciler, store):
        report = reconciler.reconcile(FleetIdentity("default", "ghost"))
        assert not report.found
        assert store.writes == 0

    def test_invalid_key_creates_no_secret(self, reconciler, store, fleets, make_fleet):
        fleets.put(make_fleet([{"name": "n0", "client": "geth", "nodekey": "0x1234"}]))

        with pytest.raises(InvalidKeyMaterial):
            reconciler.reconcile(CHAIN)

        assert store.list(ResourceKind.SECRET, "default") == []

    def test_failing_node_stops_downstream_nodes(self, reconciler, store, fleets, make_fleet, known_keys):
        fleets.put(make_fleet([
            {"name": "n0", "client": "geth", "bootnode": True, "nodekey": known_keys["one"]},
            {"name": "n1", "client": "erigon"},
            {"name": "n2", "client": "geth"},
        ]))

        with pytest.raises(UnsupportedSoftwareFamily):
            reconciler.reconcile(CHAIN)

        assert [o["metadata"]["name"] for o in store.list(ResourceKind.WORKLOAD, "default")] == ["chain-n0"]

    def test_endpoint_without_ip(self, fleets, make_fleet, known_keys):
        class NoIPStore(SqliteResourceStore):
            def create(self, kind, obj):
                created = super().create(kind, obj)
                created.get("spec", {}).pop("clusterIP", None)
                return created

        fleets.put(make_fleet([{"name": "n0", "client": "geth", "bootnode": True, "nodekey": known_keys["one"]}]))

        with pytest.raises(EndpointNotReady) as excinfo:
            FleetReconciler(fleets, NoIPStore()).reconcile(CHAIN)
        assert isinstance(excinfo.value, StoreError)

    def test_collection_errors_raised_after_sweep(self, fleets, make_fleet, three_node_fleet, known_keys):
        class NoSecretDeletes(SqliteResourceStore):
            def delete(self, kind, namespace, name):
                if kind == ResourceKind.SECRET:
                    raise StoreError("secrets are protected")
                super().delete(kind, namespace, name)

        store = NoSecretDeletes()
        reconciler = FleetReconciler(fleets, store)
        reconciler.reconcile(CHAIN)
        fleets.put(make_fleet([{"name": "n0", "client": "geth", "bootnode": True, "nodekey": known_keys["one"]}]))

        with pytest.raises(GarbageCollectionError) as excinfo:
            reconciler.reconcile(CHAIN)

        assert [kind for kind, _ in excinfo.value.errors] == ["Secret"]
        assert (ResourceKind.WORKLOAD, "chain-n2") in excinfo.value.report.deleted
        assert store.list(ResourceKind.WORKLOAD, "default")[0]["metadata"]["name"] == "chain-n0"
