"""Interactive miner configuration.

CONTRACT
- Inputs: prompt callable (text -> raw answer), wallet directory, derived paths
- Outputs (required):
  - MinerConfig built once from answers + defaults
- Invariants:
  - Wallets are enumerated before any other prompt
  - Network choice other than "1"/"2" falls back to "1" with a warning
  - Empty endpoint -> network default; empty port -> default port (no numeric check)
  - Cold and hot wallet may be the same entry
- Failure:
  - Raises FatalAbort when the wallet directory is missing/empty or an index is unknown
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger
from rich.console import Console

from .config import HostPaths, Settings
from .errors import FatalAbort
from .models import DEFAULT_NETWORK, NETWORKS, MinerConfig, Network, WalletSelection

WALLET_GUIDANCE = "Please create your wallets using 'btcli new_coldkey' and 'btcli new_hotkey' before proceeding."

Prompt = Callable[[str], str]


def enumerate_wallets(wallet_dir: Path) -> WalletSelection:
    if not wallet_dir.is_dir():
        raise FatalAbort(f"Wallet directory {wallet_dir} does not exist. {WALLET_GUIDANCE}")
    names = sorted(p.name for p in wallet_dir.iterdir() if not p.name.startswith("."))
    if not names:
        raise FatalAbort(f"No wallets found in {wallet_dir}. {WALLET_GUIDANCE}")
    return WalletSelection.from_names(names)


def resolve_network(raw: str) -> Network:
    network = NETWORKS.get(raw.strip())
    if network is None:
        logger.warning("Invalid choice. Defaulting to Main Network.")
        return DEFAULT_NETWORK
    return network


@dataclass
class ConfigCollector:
    prompt: Prompt
    settings: Settings = field(default_factory=Settings)
    console: Console = field(default_factory=Console)

    def show_wallets(self, wallets: WalletSelection) -> None:
        self.console.print("Available wallets:")
        for entry in wallets.entries:
            self.console.print(f"  [{entry.index}] {entry.name}", markup=False)

    def choose_network(self) -> Network:
        self.console.print("Select the Bittensor network:")
        for net in NETWORKS.values():
            self.console.print(f"  {net.choice}) {net.label} (netuid {net.netuid})")
        return resolve_network(self.prompt("Enter your choice [1 or 2]"))

    def collect(self, paths: HostPaths, extra_env: dict[str, str]) -> MinerConfig:
        logger.info(f"Detecting available wallets in {paths.wallet_dir}...")
        wallets = enumerate_wallets(paths.wallet_dir)

        self.console.print()
        self.console.print("Please configure your miner setup.")
        self.console.print("-------------------------------------")
        network = self.choose_network()

        endpoint = self.prompt(
            f"Enter the --subtensor.network value (default: {network.default_endpoint})"
        ).strip() or network.default_endpoint
        port = self.prompt(
            f"Enter the axon port (default: {self.settings.default_axon_port})"
        ).strip() or self.settings.default_axon_port

        self.show_wallets(wallets)
        cold = wallets.resolve(self.prompt("Enter the number corresponding to your COLDKEY wallet"), "coldkey")
        hot = wallets.resolve(self.prompt("Enter the number corresponding to your HOTKEY wallet"), "hotkey")

        return MinerConfig(
            netuid=network.netuid,
            network_endpoint=endpoint,
            wallet_cold=cold,
            wallet_hot=hot,
            axon_port=port,
            working_directory=paths.checkout,
            interpreter_path=paths.venv_python,
            extra_env=dict(extra_env),
        )
