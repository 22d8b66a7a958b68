"""Go Ethereum client."""

from typing import List, Optional, Sequence

from ..errors import GenesisRenderError
from ..json_utils import json_dumps
from ..models import Consensus, FleetSpec, Genesis, NodeSpec, SoftwareFamily, VerbosityLevel
from ..naming import PATH_CONFIG, PATH_DATA, PATH_SECRETS
from .ethereum import EthereumClient, check_hex

VERBOSITY = {
    VerbosityLevel.OFF: 0,
    VerbosityLevel.FATAL: 1,
    VerbosityLevel.ERROR: 1,
    VerbosityLevel.WARN: 2,
    VerbosityLevel.INFO: 3,
    VerbosityLevel.DEBUG: 4,
    VerbosityLevel.TRACE: 5,
    VerbosityLevel.ALL: 5,
}

INIT_GENESIS_SCRIPT = f"""#!/bin/sh
set -e
if [ ! -d {PATH_DATA}/geth/chaindata ]; then
  geth --datadir {PATH_DATA} init {PATH_CONFIG}/genesis.json
else
  echo "genesis block already initialized"
fi
"""

IMPORT_ACCOUNT_SCRIPT = f"""#!/bin/sh
set -e
if [ -z "$(ls -A {PATH_DATA}/keystore 2>/dev/null)" ]; then
  geth --datadir {PATH_DATA} account import --password {PATH_SECRETS}/account.password {PATH_SECRETS}/account.key
else
  echo "account already imported"
fi
"""


class GethClient(EthereumClient):
    family = SoftwareFamily.GETH
    command = ["geth"]

    def render_genesis(self, genesis: Genesis, consensus: Optional[Consensus]) -> str:
        consensus = self.consensus_of(consensus)
        config = self.fork_blocks(genesis)
        document = self.base_document(genesis)

        if consensus == Consensus.POW:
            config["ethash"] = {}
            extra_data = check_hex(genesis.extra_data or "0x00", "extra data")
        elif consensus == Consensus.POA:
            config["clique"] = {
                "period": genesis.clique.block_period if genesis.clique else 15,
                "epoch": genesis.clique.epoch_length if genesis.clique else 30000,
            }
            extra_data = self.clique_extra_data(genesis)
        else:
            raise GenesisRenderError(f"geth client doesn't support {consensus.value} consensus")

        return json_dumps({"config": config, **document, "extraData": extra_data})

    def render_args(self, node: NodeSpec, fleet: FleetSpec, peers: Sequence[str]) -> List[str]:
        args = ["--datadir", PATH_DATA]

        if fleet.genesis is not None:
            args += ["--networkid", str(fleet.effective_network_id)]
        elif fleet.join and fleet.join != "mainnet":
            args.append(f"--{fleet.join}")

        if node.with_nodekey:
            args += ["--nodekey", f"{PATH_SECRETS}/nodekey"]

        args += ["--port", str(self.p2p_port(node))]

        if peers:
            args += ["--bootnodes", ",".join(peers)]

        if node.coinbase:
            args += ["--miner.etherbase", node.coinbase]
            if node.import_account is not None:
                args += ["--unlock", node.coinbase, "--password", f"{PATH_SECRETS}/account.password", "--mine"]

        args += self.logging_args(node.logging)
        return args

    def logging_args(self, level: VerbosityLevel) -> List[str]:
        return ["--verbosity", str(VERBOSITY[VerbosityLevel(level)])]

    def init_genesis_script(self) -> Optional[str]:
        return INIT_GENESIS_SCRIPT

    def import_account_script(self) -> Optional[str]:
        return IMPORT_ACCOUNT_SCRIPT
