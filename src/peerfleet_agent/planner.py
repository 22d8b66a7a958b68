"""Node resource planner.

Derives the desired shape of every object a node needs:
- Volume claim: always, sized from the node quota
- Config bundle: genesis, genesis init script and account import script,
  each only where applicable; skipped when none applies
- Secret: node key and imported account material, when supplied
- Endpoint: bootstrap-contributing nodes only
- Workload: init containers + main node container

Planning is pure: it reads the node, its fleet and a snapshot of the peer
address book, and touches no store.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .clients import Client, get_client
from .errors import GenesisRenderError, InvalidKeyMaterial
from .json_utils import b64encode_text
from .models import FleetSpec, NodeSpec, SoftwareFamily
from .naming import PATH_CONFIG, PATH_DATA, PATH_SECRETS, fleet_labels, node_labels, resource_name
from .resources import DerivedResource, ResourceKind

GENESIS_FILE = "genesis.json"
INIT_GENESIS_FILE = "init-genesis.sh"
IMPORT_ACCOUNT_FILE = "import-account.sh"


@dataclass
class DerivedResourceSet:
    """Everything derived for one node in one pass."""
    node: str
    identity: Optional[str]  # public identity, when the node has key material
    p2p_port: int
    volume: DerivedResource
    workload: DerivedResource
    config: Optional[DerivedResource] = None
    secret: Optional[DerivedResource] = None
    endpoint: Optional[DerivedResource] = None

    def resources(self) -> List[DerivedResource]:
        """Derived resources in convergence order."""
        ordered = (self.volume, self.config, self.secret, self.workload, self.endpoint)
        return [r for r in ordered if r is not None]

    def names(self) -> Dict[ResourceKind, str]:
        return {r.kind: r.name for r in self.resources()}


class NodeResourcePlanner:
    """Turns a NodeSpec into a DerivedResourceSet."""

    def __init__(self, images: Optional[Dict[SoftwareFamily, str]] = None):
        self.images = images or {}

    def client_for(self, node: NodeSpec) -> Client:
        return get_client(node.client, self.images)

    def plan(self, node: NodeSpec, fleet: FleetSpec, peers: Sequence[str]) -> DerivedResourceSet:
        """Derive all resources of `node`.

        Args:
            node: node to plan
            fleet: owning fleet
            peers: addresses of bootstrap nodes preceding `node` in the fleet

        Raises:
            UnsupportedSoftwareFamily: unknown client tag
            GenesisRenderError: genesis could not be rendered for the client
            InvalidKeyMaterial: malformed key, or a bootnode without key material
        """
        client = self.client_for(node)
        identity = client.identity(node)
        if node.bootnode and not identity:
            raise InvalidKeyMaterial(f"bootnode {node.name} has no key material to derive its identity from")

        labels = node_labels(fleet.name, node.name)
        port = client.p2p_port(node)

        config = self._config_bundle(node, fleet, client, labels)
        secret = self._secret(node, fleet, client, labels)
        endpoint = None
        if node.bootnode:
            endpoint = DerivedResource(
                kind=ResourceKind.ENDPOINT,
                name=resource_name(fleet.name, node.name, ResourceKind.ENDPOINT),
                namespace=fleet.namespace,
                labels=labels,
                body={"spec": {"ports": client.endpoint_ports(port), "selector": dict(labels)}},
            )

        return DerivedResourceSet(
            node=node.name,
            identity=identity,
            p2p_port=port,
            volume=self._volume(node, fleet, labels),
            config=config,
            secret=secret,
            endpoint=endpoint,
            workload=self._workload(node, fleet, client, peers, labels, config, secret),
        )

    def _volume(self, node: NodeSpec, fleet: FleetSpec, labels: Dict[str, str]) -> DerivedResource:
        spec: Dict[str, Any] = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": node.resources.storage}},
        }
        if node.resources.storage_class:
            spec["storageClassName"] = node.resources.storage_class
        return DerivedResource(
            kind=ResourceKind.VOLUME,
            name=resource_name(fleet.name, node.name, ResourceKind.VOLUME),
            namespace=fleet.namespace,
            labels=labels,
            body={"spec": spec},
        )

    def _config_bundle(
        self, node: NodeSpec, fleet: FleetSpec, client: Client, labels: Dict[str, str]
    ) -> Optional[DerivedResource]:
        data: Dict[str, str] = {}

        if fleet.genesis is not None and client.uses_genesis:
            try:
                data[GENESIS_FILE] = client.render_genesis(fleet.genesis, fleet.consensus)
            except (TypeError, ValueError, AttributeError) as e:
                raise GenesisRenderError(f"unable to render {client.family.value} genesis: {e}")
            init_script = client.init_genesis_script()
            if init_script:
                data[INIT_GENESIS_FILE] = init_script

        if node.import_account is not None:
            import_script = client.import_account_script()
            if import_script:
                data[IMPORT_ACCOUNT_FILE] = import_script

        if not data:
            return None

        return DerivedResource(
            kind=ResourceKind.CONFIG,
            name=resource_name(fleet.name, node.name, ResourceKind.CONFIG),
            namespace=fleet.namespace,
            labels=labels,
            body={"data": data},
        )

    def _secret(
        self, node: NodeSpec, fleet: FleetSpec, client: Client, labels: Dict[str, str]
    ) -> Optional[DerivedResource]:
        if not node.has_secret_material:
            return None
        entries = client.secret_entries(node)
        if not entries:
            return None
        return DerivedResource(
            kind=ResourceKind.SECRET,
            name=resource_name(fleet.name, node.name, ResourceKind.SECRET),
            namespace=fleet.namespace,
            labels=labels,
            body={"data": {key: b64encode_text(value) for key, value in entries.items()}},
        )

    def _workload(
        self,
        node: NodeSpec,
        fleet: FleetSpec,
        client: Client,
        peers: Sequence[str],
        labels: Dict[str, str],
        config: Optional[DerivedResource],
        secret: Optional[DerivedResource],
    ) -> DerivedResource:
        volumes: List[Dict[str, Any]] = []
        mounts: List[Dict[str, Any]] = []

        if secret is not None:
            volumes.append({"name": "secrets", "secret": {"secretName": secret.name}})
            mounts.append({"name": "secrets", "mountPath": PATH_SECRETS, "readOnly": True})

        if config is not None:
            volumes.append({"name": "config", "configMap": {"name": config.name}})
            mounts.append({"name": "config", "mountPath": PATH_CONFIG, "readOnly": True})

        volumes.append({
            "name": "data",
            "persistentVolumeClaim": {"claimName": resource_name(fleet.name, node.name, ResourceKind.VOLUME)},
        })
        mounts.append({"name": "data", "mountPath": PATH_DATA})

        # genesis init, then account import, then family post-init steps
        init_containers = []
        scripts = config.body["data"] if config is not None else {}
        for container_name, script in (("init-genesis", INIT_GENESIS_FILE), ("import-account", IMPORT_ACCOUNT_FILE)):
            if script in scripts:
                init_containers.append({
                    "name": container_name,
                    "image": client.image,
                    "command": ["/bin/sh"],
                    "args": [f"{PATH_CONFIG}/{script}"],
                    "volumeMounts": [dict(m) for m in mounts],
                })
        init_containers += client.post_init_containers(node, fleet, peers, mounts)

        quota = node.resources
        main = {
            "name": "node",
            "image": client.image,
            "command": list(client.command),
            "args": client.render_args(node, fleet, peers),
            "resources": {
                "requests": {"cpu": quota.cpu, "memory": quota.memory},
                "limits": {"cpu": quota.cpu_limit, "memory": quota.memory_limit},
            },
            "volumeMounts": [dict(m) for m in mounts],
        }
        env = client.container_env(node)
        if env:
            main["env"] = env

        pod_spec: Dict[str, Any] = {
            "initContainers": init_containers,
            "containers": [main],
            "volumes": volumes,
        }
        if fleet.highly_available:
            pod_spec["affinity"] = {
                "podAntiAffinity": {
                    "requiredDuringSchedulingIgnoredDuringExecution": [{
                        "labelSelector": {"matchLabels": fleet_labels(fleet.name)},
                        "topologyKey": fleet.topology_key,
                    }],
                },
            }

        return DerivedResource(
            kind=ResourceKind.WORKLOAD,
            name=resource_name(fleet.name, node.name, ResourceKind.WORKLOAD),
            namespace=fleet.namespace,
            labels=labels,
            body={"spec": {"template": {"metadata": {"labels": dict(labels)}, "spec": pod_spec}}},
        )
