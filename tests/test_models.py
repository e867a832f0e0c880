from pathlib import Path

import pytest
from pydantic import ValidationError

from minerkit.errors import FatalAbort
from minerkit.models import NETWORKS, MinerConfig, WalletSelection


def _config(**overrides):
    values = dict(
        netuid=27,
        network_endpoint="subvortex.info:9944",
        wallet_cold="alice",
        wallet_hot="bob",
        working_directory=Path("/home/miner/Compute-Subnet"),
        interpreter_path=Path("/home/miner/venv/bin/python"),
    )
    values.update(overrides)
    return MinerConfig(**values)


def test_networks_table():
    assert NETWORKS["1"].netuid == 27
    assert NETWORKS["2"].netuid == 15
    assert NETWORKS["2"].default_endpoint == "test"


def test_wallet_selection_resolves_exact_names():
    sel = WalletSelection.from_names(["alice", "bob"])

    assert len(sel) == 2
    assert sel.resolve("1", "coldkey") == "alice"
    assert sel.resolve(" 2 ", "hotkey") == "bob"
    # Same entry for both roles is accepted.
    assert sel.resolve("1", "hotkey") == "alice"


@pytest.mark.parametrize("raw", ["0", "3", "-1", "", "one", "1.5"])
def test_wallet_selection_rejects_unknown_index(raw):
    sel = WalletSelection.from_names(["alice", "bob"])

    with pytest.raises(FatalAbort, match="Invalid selection for hotkey wallet"):
        sel.resolve(raw, "hotkey")


@pytest.mark.parametrize("raw", ["1_0", "01", "+1", "\u0661", "1 0", "10.0"])
def test_wallet_selection_matches_listed_numbers_only(raw):
    sel = WalletSelection.from_names([f"w{i}" for i in range(1, 11)])

    assert sel.resolve("10", "coldkey") == "w10"
    with pytest.raises(FatalAbort, match="Invalid selection for coldkey wallet"):
        sel.resolve(raw, "coldkey")


def test_miner_config_is_frozen():
    cfg = _config()
    with pytest.raises(ValidationError):
        cfg.wallet_cold = "mallory"


def test_miner_config_rejects_unknown_netuid():
    with pytest.raises(ValidationError):
        _config(netuid=1)


def test_miner_args_order():
    assert _config(axon_port="9000").miner_args() == [
        "--netuid", "27",
        "--subtensor.network", "subvortex.info:9944",
        "--wallet.name", "alice",
        "--wallet.hotkey", "bob",
        "--axon.port", "9000",
    ]
