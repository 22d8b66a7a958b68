"""IPFS (kubo) storage node.

IPFS nodes have no genesis. A node's identity is its configured peer id,
which must come with the matching private key. Bootstrap peers and config
profiles are applied to the repo by init containers before the daemon runs.
"""

from typing import Any, Dict, List, Optional, Sequence

from ..errors import InvalidKeyMaterial
from ..json_utils import json_dumps
from ..keys import validate_base64_key
from ..models import FleetSpec, NodeSpec, SoftwareFamily, VerbosityLevel
from ..naming import PATH_DATA, resource_name
from ..resources import ResourceKind
from . import Client

API_PORT = 5001
GATEWAY_PORT = 8080

_DEBUG_LEVELS = {VerbosityLevel.DEBUG, VerbosityLevel.TRACE, VerbosityLevel.ALL}

INIT_REPO = "test -f $IPFS_PATH/config || ipfs init --empty-repo"

# `ipfs init` generates a random identity and `ipfs config` refuses to edit
# Identity.PrivKey, so the configured pair is written into the repo config.
# Base64 keys never contain '|'.
SET_IDENTITY = (
    'sed -i'
    ' -e "s|\\"PeerID\\": \\"[^\\"]*\\"|\\"PeerID\\": \\"$IPFS_PEER_ID\\"|"'
    ' -e "s|\\"PrivKey\\": \\"[^\\"]*\\"|\\"PrivKey\\": \\"$IPFS_PRIVATE_KEY\\"|"'
    ' $IPFS_PATH/config'
)


class IPFSClient(Client):
    family = SoftwareFamily.IPFS
    command = ["ipfs"]
    default_p2p_port = 4001

    def identity(self, node: NodeSpec) -> Optional[str]:
        if not node.with_nodekey and not node.peer_id:
            return None
        if not node.with_nodekey or not node.peer_id:
            raise InvalidKeyMaterial(f"node {node.name}: peer_id and nodekey must be given together")
        validate_base64_key(node.nodekey)
        return node.peer_id

    def peer_address(self, identity: str, host: str, port: int) -> str:
        return f"/ip4/{host}/tcp/{port}/p2p/{identity}"

    def endpoint_ports(self, port: int) -> List[Dict[str, Any]]:
        return [
            {"name": "swarm", "port": port, "targetPort": port, "protocol": "TCP"},
            {"name": "swarm-udp", "port": port, "targetPort": port, "protocol": "UDP"},
            {"name": "api", "port": API_PORT, "targetPort": API_PORT, "protocol": "TCP"},
            {"name": "gateway", "port": GATEWAY_PORT, "targetPort": GATEWAY_PORT, "protocol": "TCP"},
        ]

    def secret_entries(self, node: NodeSpec) -> Dict[str, str]:
        if not node.with_nodekey:
            return {}
        return {"private-key": validate_base64_key(node.nodekey)}

    def container_env(self, node: NodeSpec) -> List[Dict[str, Any]]:
        return [{"name": "IPFS_PATH", "value": PATH_DATA}]

    def render_args(self, node: NodeSpec, fleet: FleetSpec, peers: Sequence[str]) -> List[str]:
        return ["daemon"] + self.logging_args(node.logging)

    def logging_args(self, level: VerbosityLevel) -> List[str]:
        if VerbosityLevel(level) in _DEBUG_LEVELS:
            return ["--debug"]
        return []

    def post_init_containers(
        self,
        node: NodeSpec,
        fleet: FleetSpec,
        peers: Sequence[str],
        mounts: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        env = self.container_env(node)
        if node.peer_id:
            secret_name = resource_name(fleet.name, node.name, ResourceKind.SECRET)
            env = env + [
                {"name": "IPFS_PEER_ID", "value": node.peer_id},
                {
                    "name": "IPFS_PRIVATE_KEY",
                    "valueFrom": {"secretKeyRef": {"name": secret_name, "key": "private-key"}},
                },
            ]

        def container(name: str, command: List[str], args: List[str]) -> Dict[str, Any]:
            return {
                "name": name,
                "image": self.image,
                "command": command,
                "args": args,
                "env": [dict(e) for e in env],
                "volumeMounts": [dict(m) for m in mounts],
            }

        script = INIT_REPO
        if node.peer_id:
            script = f"{INIT_REPO} && {SET_IDENTITY}"
        containers = [container("init-node", ["/bin/sh", "-c"], [script])]

        port = self.p2p_port(node)
        if port != self.default_p2p_port:
            swarm = [f"/ip4/0.0.0.0/tcp/{port}", f"/ip4/0.0.0.0/udp/{port}/quic"]
            containers.append(
                container("configure-swarm-port", ["ipfs"], ["config", "--json", "Addresses.Swarm", json_dumps(swarm, normalize=True)])
            )

        if peers:
            containers.append(container("add-bootstrap-peers", ["ipfs"], ["bootstrap", "add", *peers]))

        for profile in node.profiles:
            containers.append(
                container(f"apply-{profile}-profile", ["ipfs"], ["config", "profile", "apply", profile])
            )

        return containers
