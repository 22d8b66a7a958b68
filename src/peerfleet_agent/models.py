"""Fleet specification model.

A fleet is an ordered list of peer nodes. Order matters: it decides which
nodes can bootstrap from which (see peers.PeerAddressBook).

Specs arrive as plain dicts (JSON exports, HTTP bodies) and are parsed with
`FleetSpec.from_dict`, which raises ValueError on malformed input.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class SoftwareFamily(str, Enum):
    """Supported node implementations."""
    GETH = "geth"
    BESU = "besu"
    IPFS = "ipfs"


class Consensus(str, Enum):
    POW = "pow"
    POA = "poa"
    IBFT2 = "ibft2"


class VerbosityLevel(str, Enum):
    """Abstract log verbosity, mapped to each client's own flag."""
    OFF = "off"
    FATAL = "fatal"
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"
    TRACE = "trace"
    ALL = "all"


DEFAULT_TOPOLOGY_KEY = "topology.kubernetes.io/zone"


def _enum(enum_cls, value, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValueError(f"invalid {what} {value!r} (expected one of: {allowed})")


def _family(value):
    # keep unknown tags as-is so they fail as UnsupportedSoftwareFamily at planning
    try:
        return SoftwareFamily(value)
    except ValueError:
        return str(value)


@dataclass(frozen=True)
class FleetIdentity:
    """Namespace-scoped fleet name."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class Resources:
    """Compute and storage quota of a node."""
    cpu: str = "2"
    cpu_limit: str = "3"
    memory: str = "4Gi"
    memory_limit: str = "6Gi"
    storage: str = "100Gi"
    storage_class: Optional[str] = None  # cluster default when unset

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Resources":
        data = dict(data or {})
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"unknown resources field(s): {', '.join(sorted(unknown))}")
        return cls(**{k: str(v) if k != "storage_class" else v for k, v in data.items()})


@dataclass
class ImportedAccount:
    """Account key imported into the node keystore at startup."""
    private_key: str
    password: str


@dataclass
class Account:
    """Genesis allocation entry."""
    address: str
    balance: Optional[str] = None
    code: Optional[str] = None
    storage: Dict[str, str] = field(default_factory=dict)


@dataclass
class Clique:
    signers: List[str] = field(default_factory=list)
    block_period: int = 15
    epoch_length: int = 30000


@dataclass
class Ethash:
    fixed_difficulty: Optional[int] = None


@dataclass
class IBFT2:
    validators: List[str] = field(default_factory=list)
    block_period: int = 15
    epoch_length: int = 30000
    request_timeout: int = 10


@dataclass
class Forks:
    """Fork activation block numbers."""
    homestead: int = 0
    eip150: int = 0
    eip155: int = 0
    eip158: int = 0
    byzantium: int = 0
    constantinople: int = 0
    petersburg: int = 0
    istanbul: int = 0


@dataclass
class Genesis:
    """Custom genesis block of a private network."""
    chain_id: int
    network_id: Optional[int] = None
    coinbase: str = "0x0000000000000000000000000000000000000000"
    difficulty: str = "0x1"
    gas_limit: str = "0x47b760"
    timestamp: str = "0x0"
    nonce: str = "0x0"
    mix_hash: str = "0x" + "0" * 64
    extra_data: Optional[str] = None
    accounts: List[Account] = field(default_factory=list)
    forks: Forks = field(default_factory=Forks)
    clique: Optional[Clique] = None
    ethash: Optional[Ethash] = None
    ibft2: Optional[IBFT2] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Genesis":
        if not isinstance(data, dict):
            raise ValueError("genesis must be an object")
        if "chain_id" not in data:
            raise ValueError("genesis.chain_id is required")
        data = dict(data)
        accounts = data.pop("accounts", [])
        if not isinstance(accounts, list):
            raise ValueError("genesis.accounts must be a list")
        forks = data.pop("forks", {})
        clique = data.pop("clique", None)
        ethash = data.pop("ethash", None)
        ibft2 = data.pop("ibft2", None)
        try:
            return cls(
                accounts=[Account(**a) for a in accounts],
                forks=Forks(**forks),
                clique=Clique(**clique) if clique is not None else None,
                ethash=Ethash(**ethash) if ethash is not None else None,
                ibft2=IBFT2(**ibft2) if ibft2 is not None else None,
                **data,
            )
        except TypeError as e:
            # also covers non-object accounts, forks and consensus sections
            raise ValueError(f"invalid genesis: {e}")

    @property
    def effective_network_id(self) -> int:
        return self.network_id if self.network_id is not None else self.chain_id


@dataclass
class NodeSpec:
    """One peer node of a fleet."""
    name: str
    client: Union[SoftwareFamily, str]  # unknown tags are rejected by the planner
    bootnode: bool = False  # address is handed to later nodes for discovery
    nodekey: Optional[str] = None  # raw private key (hex for ethereum, base64 for ipfs)
    peer_id: Optional[str] = None  # ipfs only
    import_account: Optional[ImportedAccount] = None
    coinbase: Optional[str] = None
    p2p_port: Optional[int] = None  # family default when unset
    logging: VerbosityLevel = VerbosityLevel.INFO
    resources: Resources = field(default_factory=Resources)
    profiles: List[str] = field(default_factory=list)  # ipfs config profiles

    @property
    def with_nodekey(self) -> bool:
        return bool(self.nodekey)

    @property
    def has_secret_material(self) -> bool:
        return self.with_nodekey or self.import_account is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeSpec":
        data = dict(data)
        for required in ("name", "client"):
            if not data.get(required):
                raise ValueError(f"node.{required} is required")
        imported = data.pop("import_account", None)
        try:
            return cls(
                client=_family(data.pop("client")),
                logging=_enum(VerbosityLevel, data.pop("logging", "info"), "logging level"),
                resources=Resources.from_dict(data.pop("resources", None)),
                import_account=ImportedAccount(**imported) if imported is not None else None,
                **data,
            )
        except TypeError as e:
            raise ValueError(f"invalid node {data.get('name')!r}: {e}")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "client": getattr(self.client, "value", self.client),
            "bootnode": self.bootnode,
            "logging": self.logging.value,
            "resources": dict(self.resources.__dict__),
        }
        for key in ("nodekey", "peer_id", "coinbase", "p2p_port"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.import_account is not None:
            out["import_account"] = dict(self.import_account.__dict__)
        if self.profiles:
            out["profiles"] = list(self.profiles)
        return out


@dataclass
class FleetSpec:
    """Declarative description of a fleet of peer nodes."""
    name: str
    namespace: str = "default"
    uid: Optional[str] = None  # assigned by the fleet store on first write
    nodes: List[NodeSpec] = field(default_factory=list)
    highly_available: bool = False
    topology_key: str = DEFAULT_TOPOLOGY_KEY
    consensus: Optional[Consensus] = None
    genesis: Optional[Genesis] = None
    join: Optional[str] = None  # public network to join, e.g. "goerli"
    network_id: Optional[int] = None  # overrides genesis.network_id
    # raw dict the genesis was parsed from, kept for lossless exports
    genesis_source: Optional[Dict[str, Any]] = field(default=None, repr=False, compare=False)

    @property
    def identity(self) -> FleetIdentity:
        return FleetIdentity(self.namespace, self.name)

    @property
    def effective_network_id(self) -> Optional[int]:
        if self.network_id is not None:
            return self.network_id
        return self.genesis.effective_network_id if self.genesis is not None else None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FleetSpec":
        """Parse a fleet spec dict.

        Raises:
            ValueError: on missing or malformed fields, duplicate node names,
                or a genesis combined with `join`.
        """
        if not isinstance(data, dict):
            raise ValueError("fleet spec must be an object")
        data = dict(data)
        if not data.get("name"):
            raise ValueError("fleet name is required")

        nodes = [NodeSpec.from_dict(n) for n in data.pop("nodes", [])]
        names = [n.name for n in nodes]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate node name(s): {', '.join(duplicates)}")

        genesis_source = data.pop("genesis", None)
        genesis = Genesis.from_dict(genesis_source) if genesis_source is not None else None
        consensus = data.pop("consensus", None)
        if genesis is not None and data.get("join"):
            raise ValueError("genesis and join are mutually exclusive")
        network_id = data.get("network_id")
        if network_id is not None and (not isinstance(network_id, int) or isinstance(network_id, bool)):
            raise ValueError(f"invalid network_id {network_id!r}")

        try:
            return cls(
                nodes=nodes,
                genesis=genesis,
                genesis_source=genesis_source,
                consensus=_enum(Consensus, consensus, "consensus") if consensus else None,
                **data,
            )
        except TypeError as e:
            raise ValueError(f"invalid fleet spec: {e}")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
            "highly_available": self.highly_available,
            "topology_key": self.topology_key,
            "nodes": [n.to_dict() for n in self.nodes],
        }
        if self.consensus is not None:
            out["consensus"] = self.consensus.value
        if self.genesis_source is not None:
            out["genesis"] = self.genesis_source
        elif self.genesis is not None:
            out["genesis"] = asdict(self.genesis)
        if self.join:
            out["join"] = self.join
        if self.network_id is not None:
            out["network_id"] = self.network_id
        return out
