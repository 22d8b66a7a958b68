"""Behavior shared by Ethereum execution clients (geth, besu)."""

import re
from typing import Any, Dict, List, Optional

from ..errors import GenesisRenderError
from ..keys import derive_public_key, strip_hex_prefix
from ..models import Consensus, Genesis, NodeSpec
from . import Client

_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX = re.compile(r"^0x[0-9a-fA-F]*$")


def check_address(value: str, what: str) -> str:
    """Return a lowercase address without its 0x prefix."""
    if not isinstance(value, str) or not _ADDRESS.match(value):
        raise GenesisRenderError(f"invalid {what} address {value!r}")
    return value[2:].lower()


def check_hex(value: str, what: str) -> str:
    if not isinstance(value, str) or not _HEX.match(value):
        raise GenesisRenderError(f"invalid {what} {value!r}: expected 0x-prefixed hex")
    return value


class EthereumClient(Client):
    default_p2p_port = 30303
    uses_genesis = True

    def identity(self, node: NodeSpec) -> Optional[str]:
        if not node.with_nodekey:
            return None
        return derive_public_key(node.nodekey)

    def peer_address(self, identity: str, host: str, port: int) -> str:
        return f"enode://{identity}@{host}:{port}"

    def endpoint_ports(self, port: int) -> List[Dict[str, Any]]:
        return [
            {"name": "discovery", "port": port, "targetPort": port, "protocol": "UDP"},
            {"name": "p2p", "port": port, "targetPort": port, "protocol": "TCP"},
        ]

    def secret_entries(self, node: NodeSpec) -> Dict[str, str]:
        data = {}
        if node.with_nodekey:
            data["nodekey"] = strip_hex_prefix(node.nodekey)
        if node.import_account is not None:
            data["account.key"] = strip_hex_prefix(node.import_account.private_key)
            data["account.password"] = node.import_account.password
        return data

    # genesis helpers

    @staticmethod
    def consensus_of(consensus: Optional[Consensus]) -> Consensus:
        return consensus or Consensus.POW

    @staticmethod
    def fork_blocks(genesis: Genesis) -> Dict[str, int]:
        forks = genesis.forks
        return {
            "chainId": genesis.chain_id,
            "homesteadBlock": forks.homestead,
            "eip150Block": forks.eip150,
            "eip155Block": forks.eip155,
            "eip158Block": forks.eip158,
            "byzantiumBlock": forks.byzantium,
            "constantinopleBlock": forks.constantinople,
            "petersburgBlock": forks.petersburg,
            "istanbulBlock": forks.istanbul,
        }

    @staticmethod
    def clique_extra_data(genesis: Genesis) -> str:
        """Vanity (32 bytes) + signer addresses + empty seal (65 bytes)."""
        if genesis.clique is None or not genesis.clique.signers:
            raise GenesisRenderError("poa consensus requires at least one clique signer")
        signers = "".join(check_address(s, "clique signer") for s in genesis.clique.signers)
        return "0x" + "00" * 32 + signers + "00" * 65

    @staticmethod
    def alloc(genesis: Genesis) -> Dict[str, Dict[str, Any]]:
        alloc = {}
        for account in genesis.accounts:
            entry: Dict[str, Any] = {"balance": check_hex(account.balance or "0x0", "balance")}
            if account.code:
                entry["code"] = check_hex(account.code, "code")
            if account.storage:
                entry["storage"] = dict(account.storage)
            alloc[check_address(account.address, "account")] = entry
        return alloc

    def base_document(self, genesis: Genesis) -> Dict[str, Any]:
        return {
            "nonce": check_hex(genesis.nonce, "nonce"),
            "timestamp": check_hex(genesis.timestamp, "timestamp"),
            "gasLimit": check_hex(genesis.gas_limit, "gas limit"),
            "difficulty": check_hex(genesis.difficulty, "difficulty"),
            "mixHash": check_hex(genesis.mix_hash, "mix hash"),
            "coinbase": "0x" + check_address(genesis.coinbase, "coinbase"),
            "alloc": self.alloc(genesis),
        }
