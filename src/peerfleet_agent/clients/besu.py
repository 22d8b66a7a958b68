"""Hyperledger Besu client.

Besu reads genesis directly from the config bundle, so it needs no init
script. It has no keystore either: account import is a geth-only feature.
"""

from typing import List, Optional, Sequence

from ..errors import GenesisRenderError
from ..json_utils import json_dumps
from ..models import Consensus, FleetSpec, Genesis, NodeSpec, SoftwareFamily, VerbosityLevel
from ..naming import PATH_CONFIG, PATH_DATA, PATH_SECRETS
from .ethereum import EthereumClient, check_hex


class BesuClient(EthereumClient):
    family = SoftwareFamily.BESU
    command = ["besu"]

    def render_genesis(self, genesis: Genesis, consensus: Optional[Consensus]) -> str:
        consensus = self.consensus_of(consensus)
        config = self.fork_blocks(genesis)
        document = self.base_document(genesis)

        if consensus == Consensus.POW:
            ethash = {}
            if genesis.ethash is not None and genesis.ethash.fixed_difficulty is not None:
                ethash["fixeddifficulty"] = genesis.ethash.fixed_difficulty
            config["ethash"] = ethash
            extra_data = check_hex(genesis.extra_data or "0x00", "extra data")
        elif consensus == Consensus.POA:
            config["clique"] = {
                "blockperiodseconds": genesis.clique.block_period if genesis.clique else 15,
                "epochlength": genesis.clique.epoch_length if genesis.clique else 30000,
            }
            extra_data = self.clique_extra_data(genesis)
        elif consensus == Consensus.IBFT2:
            ibft2 = genesis.ibft2
            if ibft2 is None:
                raise GenesisRenderError("ibft2 consensus requires ibft2 genesis parameters")
            # RLP-encoded validator list, computed by besu tooling
            if not genesis.extra_data:
                raise GenesisRenderError("ibft2 consensus requires genesis extra_data")
            config["ibft2"] = {
                "blockperiodseconds": ibft2.block_period,
                "epochlength": ibft2.epoch_length,
                "requesttimeoutseconds": ibft2.request_timeout,
            }
            extra_data = check_hex(genesis.extra_data, "extra data")
        else:
            raise GenesisRenderError(f"besu client doesn't support {consensus} consensus")

        return json_dumps({"config": config, **document, "extraData": extra_data})

    def render_args(self, node: NodeSpec, fleet: FleetSpec, peers: Sequence[str]) -> List[str]:
        args = [f"--data-path={PATH_DATA}"]

        if fleet.genesis is not None:
            args.append(f"--genesis-file={PATH_CONFIG}/genesis.json")
            args.append(f"--network-id={fleet.effective_network_id}")
        elif fleet.join:
            args.append(f"--network={fleet.join}")

        if node.with_nodekey:
            args.append(f"--node-private-key-file={PATH_SECRETS}/nodekey")

        args.append(f"--p2p-port={self.p2p_port(node)}")

        if peers:
            args.append(f"--bootnodes={','.join(peers)}")

        if node.coinbase:
            args.append(f"--miner-coinbase={node.coinbase}")

        args += self.logging_args(node.logging)
        return args

    def logging_args(self, level: VerbosityLevel) -> List[str]:
        return [f"--logging={VerbosityLevel(level).value.upper()}"]
