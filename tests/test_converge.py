import pytest

from peerfleet_agent.converge import ConvergenceExecutor
from peerfleet_agent.errors import StoreError
from peerfleet_agent.models import FleetSpec
from peerfleet_agent.resources import DerivedResource, OperationResult, ResourceKind


FLEET_UID = "9b1deb4d-3b7d-4bad-9bdd-2b0d7b3dcb6d"
LABELS = {"name": "node", "fleet": "chain", "instance": "n0"}


@pytest.fixture
def fleet():
    return FleetSpec(name="chain", uid=FLEET_UID)


@pytest.fixture
def executor(store):
    return ConvergenceExecutor(store)


def volume(storage="100Gi"):
    return DerivedResource(
        kind=ResourceKind.VOLUME,
        name="chain-n0-data",
        namespace="default",
        labels=dict(LABELS),
        body={"spec": {"accessModes": ["ReadWriteOnce"], "resources": {"requests": {"storage": storage}}}},
    )


def workload(image="ethereum/client-go:v1.10.26"):
    template = {"metadata": {"labels": dict(LABELS)}, "spec": {"containers": [{"name": "node", "image": image}]}}
    return DerivedResource(
        kind=ResourceKind.WORKLOAD,
        name="chain-n0",
        namespace="default",
        labels=dict(LABELS),
        body={"spec": {"template": template}},
    )


def config(data):
    return DerivedResource(
        kind=ResourceKind.CONFIG, name="chain-n0-config", namespace="default", labels=dict(LABELS), body={"data": data}
    )


class TestConverge:
    def test_created_with_controller_reference(self, executor, fleet):
        result = executor.converge(fleet, workload())
        assert result.operation == OperationResult.CREATED
        refs = result.object["metadata"]["ownerReferences"]
        assert len(refs) == 1
        assert refs[0]["uid"] == FLEET_UID
        assert refs[0]["controller"] is True
        assert result.object["spec"]["replicas"] == 1
        assert result.object["spec"]["selector"] == {"matchLabels": LABELS}

    def test_second_converge_writes_nothing(self, executor, fleet, store):
        executor.converge(fleet, workload())
        writes = store.writes
        assert executor.converge(fleet, workload()).operation == OperationResult.UNCHANGED
        assert store.writes == writes

    def test_changed_template_is_updated(self, executor, fleet):
        executor.converge(fleet, workload())
        result = executor.converge(fleet, workload(image="ethereum/client-go:v1.11.0"))
        assert result.operation == OperationResult.UPDATED
        assert result.object["spec"]["template"]["spec"]["containers"][0]["image"] == "ethereum/client-go:v1.11.0"

    def test_volume_size_fixed_at_creation(self, executor, fleet, store):
        executor.converge(fleet, volume("100Gi"))
        result = executor.converge(fleet, volume("200Gi"))
        assert result.operation == OperationResult.UNCHANGED
        live = store.get(ResourceKind.VOLUME, "default", "chain-n0-data")
        assert live["spec"]["resources"]["requests"]["storage"] == "100Gi"

    def test_user_labels_and_replicas_survive(self, executor, fleet, store):
        created = executor.converge(fleet, workload()).object
        created["metadata"]["labels"]["team"] = "infra"
        created["spec"]["replicas"] = 0
        store.update(ResourceKind.WORKLOAD, created)

        result = executor.converge(fleet, workload())
        assert result.operation == OperationResult.UNCHANGED
        assert result.object["metadata"]["labels"]["team"] == "infra"
        assert result.object["spec"]["replicas"] == 0

    def test_config_entries_replaced(self, executor, fleet):
        executor.converge(fleet, config({"genesis.json": "{}", "import-account.sh": "#!/bin/sh"}))
        result = executor.converge(fleet, config({"genesis.json": "{}"}))
        assert result.operation == OperationResult.UPDATED
        assert result.object["data"] == {"genesis.json": "{}"}

    def test_object_of_other_owner_raises(self, executor, fleet):
        executor.converge(FleetSpec(name="other", uid="other-uid"), workload())
        with pytest.raises(StoreError, match="already owned"):
            executor.converge(fleet, workload())

    def test_fleet_without_uid_raises(self, executor):
        with pytest.raises(StoreError, match="uid"):
            executor.converge(FleetSpec(name="chain"), workload())
