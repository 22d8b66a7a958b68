"""Node software strategies.

Each supported node implementation (geth, besu, ipfs) is a Client. A Client
knows everything family-specific about running a node:
- Genesis material and init scripts
- Main process command line, given quotas, ports and bootstrap peers
- Mapping of the abstract verbosity level to its own logging flag
- Public identity, peer address format and exposed ports

The planner picks one Client per node via `get_client` and never branches
on the family itself.
"""

from typing import Any, Dict, List, Optional, Sequence

from ..errors import GenesisRenderError, UnsupportedSoftwareFamily
from ..models import Consensus, FleetSpec, Genesis, NodeSpec, SoftwareFamily, VerbosityLevel


class Client:
    """Base class for all node software families."""

    family: SoftwareFamily
    command: List[str] = []
    default_p2p_port: int = 0
    # whether a fleet genesis is rendered into the node's config bundle
    uses_genesis = False

    def __init__(self, image: str):
        self.image = image

    def p2p_port(self, node: NodeSpec) -> int:
        return node.p2p_port or self.default_p2p_port

    def render_genesis(self, genesis: Genesis, consensus: Optional[Consensus]) -> str:
        raise GenesisRenderError(f"{self.family.value} client doesn't use genesis files")

    def render_args(self, node: NodeSpec, fleet: FleetSpec, peers: Sequence[str]) -> List[str]:
        """Arguments of the main node process."""
        raise NotImplementedError

    def logging_args(self, level: VerbosityLevel) -> List[str]:
        raise NotImplementedError

    def identity(self, node: NodeSpec) -> Optional[str]:
        """Public identity derived from the node's key material, if any."""
        raise NotImplementedError

    def peer_address(self, identity: str, host: str, port: int) -> str:
        raise NotImplementedError

    def endpoint_ports(self, port: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def secret_entries(self, node: NodeSpec) -> Dict[str, str]:
        """Plain-text secret entries; empty when the node has no key material."""
        raise NotImplementedError

    def container_env(self, node: NodeSpec) -> List[Dict[str, Any]]:
        return []

    def init_genesis_script(self) -> Optional[str]:
        """Script that initializes the data dir from genesis, if required."""
        return None

    def import_account_script(self) -> Optional[str]:
        return None

    def post_init_containers(
        self,
        node: NodeSpec,
        fleet: FleetSpec,
        peers: Sequence[str],
        mounts: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Family-specific init containers, run after genesis and import."""
        return []


DEFAULT_IMAGES = {
    SoftwareFamily.GETH: "ethereum/client-go:v1.10.26",
    SoftwareFamily.BESU: "hyperledger/besu:22.10.3",
    SoftwareFamily.IPFS: "ipfs/kubo:v0.17.0",
}


def get_client(family, images: Optional[Dict[SoftwareFamily, str]] = None) -> Client:
    """Return the strategy for a software family.

    Raises:
        UnsupportedSoftwareFamily: if `family` is not a known family tag
    """
    from .besu import BesuClient
    from .geth import GethClient
    from .ipfs import IPFSClient

    classes = {
        SoftwareFamily.GETH: GethClient,
        SoftwareFamily.BESU: BesuClient,
        SoftwareFamily.IPFS: IPFSClient,
    }
    try:
        family = SoftwareFamily(family)
    except ValueError:
        raise UnsupportedSoftwareFamily(str(getattr(family, "value", family)))

    image = (images or {}).get(family) or DEFAULT_IMAGES[family]
    return classes[family](image)
