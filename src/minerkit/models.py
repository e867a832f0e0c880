"""Run data models.

CONTRACT
- Inputs: values collected from the operator plus settings-derived paths
- Outputs:
  - Validated, immutable objects (Network, WalletSelection, MinerConfig, SupervisorProcessSpec)
- Invariants:
  - netuid is one of the fixed networks (27 main, 15 test)
  - WalletSelection indices are 1..N in enumeration order
  - MinerConfig is frozen once constructed
- Failure:
  - Raises ValidationError on schema mismatch
  - WalletSelection.resolve raises FatalAbort for unknown indices
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import FatalAbort

WalletRole = Literal["coldkey", "hotkey"]


class Network(BaseModel):
    model_config = ConfigDict(frozen=True)

    choice: str
    netuid: Literal[27, 15]
    label: str
    default_endpoint: str


NETWORKS: dict[str, Network] = {
    "1": Network(choice="1", netuid=27, label="Main Network", default_endpoint="subvortex.info:9944"),
    "2": Network(choice="2", netuid=15, label="Test Network", default_endpoint="test"),
}
DEFAULT_NETWORK = NETWORKS["1"]


class WalletEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    name: str


class WalletSelection(BaseModel):
    """Ordered index -> wallet name mapping shown to the operator."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[WalletEntry, ...] = ()

    @classmethod
    def from_names(cls, names: list[str]) -> WalletSelection:
        return cls(entries=tuple(WalletEntry(index=i, name=n) for i, n in enumerate(names, start=1)))

    def __len__(self) -> int:
        return len(self.entries)

    def resolve(self, raw: str, role: WalletRole) -> str:
        choice = raw.strip()
        for entry in self.entries:
            if str(entry.index) == choice:
                return entry.name
        raise FatalAbort(f"Invalid selection for {role} wallet.")


class MinerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    netuid: Literal[27, 15]
    network_endpoint: str
    wallet_cold: str
    wallet_hot: str
    # Passed through as typed; not validated as a number.
    axon_port: str = "8091"
    working_directory: Path
    interpreter_path: Path
    extra_env: dict[str, str] = Field(default_factory=dict)

    def miner_args(self) -> list[str]:
        return [
            "--netuid", str(self.netuid),
            "--subtensor.network", self.network_endpoint,
            "--wallet.name", self.wallet_cold,
            "--wallet.hotkey", self.wallet_hot,
            "--axon.port", self.axon_port,
        ]


class SupervisorProcessSpec(BaseModel):
    """One pm2 app entry."""

    model_config = ConfigDict(frozen=True)

    name: str
    cwd: str
    script: str
    interpreter: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        return {"apps": [self.model_dump()]}
