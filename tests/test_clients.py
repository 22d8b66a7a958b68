import json

import pytest

from peerfleet_agent.clients import DEFAULT_IMAGES, get_client
from peerfleet_agent.errors import GenesisRenderError, InvalidKeyMaterial, UnsupportedSoftwareFamily
from peerfleet_agent.models import Consensus, FleetSpec, Genesis, NodeSpec, SoftwareFamily, VerbosityLevel

SIGNER = "0x" + "ab" * 20


def node(**fields) -> NodeSpec:
    fields.setdefault("name", "n0")
    fields.setdefault("client", "geth")
    return NodeSpec.from_dict(fields)


class TestGetClient:
    def test_known_families(self):
        for family in SoftwareFamily:
            client = get_client(family.value)
            assert client.family == family
            assert client.image == DEFAULT_IMAGES[family]

    def test_unknown_family_raises(self):
        with pytest.raises(UnsupportedSoftwareFamily, match="parity"):
            get_client("parity")

    def test_image_override(self):
        client = get_client(SoftwareFamily.GETH, {SoftwareFamily.GETH: "registry.local/geth:dev"})
        assert client.image == "registry.local/geth:dev"


class TestGeth:
    def test_pow_genesis(self):
        rendered = json.loads(get_client("geth").render_genesis(Genesis.from_dict({"chain_id": 1337}), None))
        assert rendered["config"]["chainId"] == 1337
        assert rendered["config"]["ethash"] == {}
        assert rendered["extraData"] == "0x00"

    def test_poa_genesis_extra_data_holds_signers(self):
        genesis = Genesis.from_dict({"chain_id": 5, "clique": {"signers": [SIGNER], "block_period": 5}})
        rendered = json.loads(get_client("geth").render_genesis(genesis, Consensus.POA))
        assert rendered["config"]["clique"] == {"period": 5, "epoch": 30000}
        assert rendered["extraData"] == "0x" + "00" * 32 + "ab" * 20 + "00" * 65

    def test_poa_without_signers_raises(self):
        with pytest.raises(GenesisRenderError):
            get_client("geth").render_genesis(Genesis.from_dict({"chain_id": 5}), Consensus.POA)

    def test_ibft2_unsupported(self):
        genesis = Genesis.from_dict({"chain_id": 5, "ibft2": {}, "extra_data": "0x01"})
        with pytest.raises(GenesisRenderError, match="ibft2"):
            get_client("geth").render_genesis(genesis, Consensus.IBFT2)

    def test_invalid_alloc_address_raises(self):
        genesis = Genesis.from_dict({"chain_id": 5, "accounts": [{"address": "0x12", "balance": "0x1"}]})
        with pytest.raises(GenesisRenderError):
            get_client("geth").render_genesis(genesis, None)

    @pytest.mark.parametrize(
        "level,flag",
        [(VerbosityLevel.OFF, "0"), (VerbosityLevel.ERROR, "1"), (VerbosityLevel.INFO, "3"), (VerbosityLevel.ALL, "5")],
    )
    def test_verbosity(self, level, flag):
        assert get_client("geth").logging_args(level) == ["--verbosity", flag]

    def test_args_for_custom_network(self, known_keys):
        fleet = FleetSpec.from_dict({"name": "f", "genesis": {"chain_id": 1337, "network_id": 9}})
        n = node(nodekey=known_keys["one"], p2p_port=30304)
        args = get_client("geth").render_args(n, fleet, ["enode://a@1.2.3.4:30303", "enode://b@1.2.3.5:30303"])
        assert args == [
            "--datadir", "/mnt/data",
            "--networkid", "9",
            "--nodekey", "/mnt/secrets/nodekey",
            "--port", "30304",
            "--bootnodes", "enode://a@1.2.3.4:30303,enode://b@1.2.3.5:30303",
            "--verbosity", "3",
        ]

    def test_fleet_network_id_overrides_genesis(self):
        fleet = FleetSpec.from_dict({"name": "f", "network_id": 42, "genesis": {"chain_id": 1337, "network_id": 9}})
        args = get_client("geth").render_args(node(), fleet, ())
        assert args[args.index("--networkid") + 1] == "42"

    def test_args_for_public_network(self):
        client = get_client("geth")
        assert "--goerli" in client.render_args(node(), FleetSpec(name="f", join="goerli"), ())
        assert client.render_args(node(), FleetSpec(name="f", join="mainnet"), ())[2:4] == ["--port", "30303"]

    def test_coinbase_with_import_unlocks_and_mines(self, known_keys):
        n = node(coinbase=SIGNER, import_account={"private_key": known_keys["two"], "password": "secret"})
        args = get_client("geth").render_args(n, FleetSpec(name="f"), ())
        assert args[args.index("--miner.etherbase") + 1] == SIGNER
        assert "--unlock" in args and "--mine" in args

    def test_peer_address(self, known_keys):
        assert get_client("geth").peer_address(known_keys["one_id"], "10.96.0.2", 30303) == (
            f"enode://{known_keys['one_id']}@10.96.0.2:30303"
        )

    def test_secret_entries_strip_prefix(self, known_keys):
        n = node(nodekey=known_keys["one"], import_account={"private_key": known_keys["two"], "password": "pw"})
        assert get_client("geth").secret_entries(n) == {
            "nodekey": known_keys["one"][2:],
            "account.key": known_keys["two"][2:],
            "account.password": "pw",
        }


class TestBesu:
    def test_ibft2_requires_extra_data(self):
        genesis = Genesis.from_dict({"chain_id": 5, "ibft2": {}})
        with pytest.raises(GenesisRenderError, match="extra_data"):
            get_client("besu").render_genesis(genesis, Consensus.IBFT2)

    def test_ibft2_genesis(self):
        genesis = Genesis.from_dict({"chain_id": 5, "ibft2": {"block_period": 2}, "extra_data": "0xf83ea0"})
        rendered = json.loads(get_client("besu").render_genesis(genesis, Consensus.IBFT2))
        assert rendered["config"]["ibft2"] == {
            "blockperiodseconds": 2,
            "epochlength": 30000,
            "requesttimeoutseconds": 10,
        }
        assert rendered["extraData"] == "0xf83ea0"

    def test_pow_fixed_difficulty(self):
        genesis = Genesis.from_dict({"chain_id": 5, "ethash": {"fixed_difficulty": 100}})
        rendered = json.loads(get_client("besu").render_genesis(genesis, Consensus.POW))
        assert rendered["config"]["ethash"] == {"fixeddifficulty": 100}

    def test_args(self, known_keys):
        fleet = FleetSpec.from_dict({"name": "f", "genesis": {"chain_id": 1337}})
        n = node(client="besu", nodekey=known_keys["one"], coinbase=SIGNER, logging="debug")
        assert get_client("besu").render_args(n, fleet, ["enode://a@1.2.3.4:30303"]) == [
            "--data-path=/mnt/data",
            "--genesis-file=/mnt/config/genesis.json",
            "--network-id=1337",
            "--node-private-key-file=/mnt/secrets/nodekey",
            "--p2p-port=30303",
            "--bootnodes=enode://a@1.2.3.4:30303",
            f"--miner-coinbase={SIGNER}",
            "--logging=DEBUG",
        ]

    def test_public_network(self):
        args = get_client("besu").render_args(node(client="besu"), FleetSpec(name="f", join="goerli"), ())
        assert "--network=goerli" in args

    def test_no_import_script(self):
        assert get_client("besu").import_account_script() is None
        assert get_client("besu").init_genesis_script() is None


class TestIPFS:
    def test_identity_is_peer_id(self, known_keys):
        n = node(client="ipfs", nodekey=known_keys["ipfs"], peer_id=known_keys["ipfs_peer_id"])
        assert get_client("ipfs").identity(n) == known_keys["ipfs_peer_id"]

    def test_identity_needs_key_and_peer_id(self, known_keys):
        with pytest.raises(InvalidKeyMaterial):
            get_client("ipfs").identity(node(client="ipfs", peer_id=known_keys["ipfs_peer_id"]))

    def test_no_key_no_identity(self):
        assert get_client("ipfs").identity(node(client="ipfs")) is None

    def test_peer_address(self):
        assert get_client("ipfs").peer_address("12D3Koo", "10.96.0.2", 4001) == "/ip4/10.96.0.2/tcp/4001/p2p/12D3Koo"

    def test_render_genesis_raises(self):
        with pytest.raises(GenesisRenderError):
            get_client("ipfs").render_genesis(Genesis(chain_id=1), None)

    @pytest.mark.parametrize(
        "level,args",
        [(VerbosityLevel.INFO, ["daemon"]), (VerbosityLevel.DEBUG, ["daemon", "--debug"])],
    )
    def test_args(self, level, args):
        assert get_client("ipfs").render_args(node(client="ipfs", logging=level.value), FleetSpec(name="f"), ()) == args

    def test_post_init_containers_order(self, known_keys):
        n = node(
            client="ipfs",
            nodekey=known_keys["ipfs"],
            peer_id=known_keys["ipfs_peer_id"],
            profiles=["lowpower", "server"],
        )
        containers = get_client("ipfs").post_init_containers(n, FleetSpec(name="f"), ["/ip4/10.96.0.2/tcp/4001/p2p/x"], [])
        assert [c["name"] for c in containers] == [
            "init-node",
            "add-bootstrap-peers",
            "apply-lowpower-profile",
            "apply-server-profile",
        ]
        assert containers[1]["args"] == ["bootstrap", "add", "/ip4/10.96.0.2/tcp/4001/p2p/x"]
        key_env = [e for e in containers[0]["env"] if e["name"] == "IPFS_PRIVATE_KEY"][0]
        assert key_env["valueFrom"]["secretKeyRef"] == {"name": "f-n0-secrets", "key": "private-key"}

    def test_init_writes_configured_identity(self, known_keys):
        n = node(client="ipfs", nodekey=known_keys["ipfs"], peer_id=known_keys["ipfs_peer_id"])
        init = get_client("ipfs").post_init_containers(n, FleetSpec(name="f"), (), [])[0]
        script = init["args"][0]
        assert script.startswith("test -f $IPFS_PATH/config || ipfs init --empty-repo && sed -i")
        assert '\\"PeerID\\": \\"$IPFS_PEER_ID\\"' in script
        assert '\\"PrivKey\\": \\"$IPFS_PRIVATE_KEY\\"' in script

    def test_init_without_identity_keeps_generated_one(self):
        init = get_client("ipfs").post_init_containers(node(client="ipfs"), FleetSpec(name="f"), (), [])[0]
        assert init["args"] == ["test -f $IPFS_PATH/config || ipfs init --empty-repo"]
        assert [e["name"] for e in init["env"]] == ["IPFS_PATH"]

    def test_custom_swarm_port(self):
        containers = get_client("ipfs").post_init_containers(node(client="ipfs", p2p_port=4002), FleetSpec(name="f"), (), [])
        assert [c["name"] for c in containers] == ["init-node", "configure-swarm-port"]
