"""System package manager (apt/dpkg).

CONTRACT
- Inputs: Shell, package names
- Outputs:
  - installed(): read-only dpkg query
  - update()/install(): privileged apt-get runs
- Invariants:
  - Installs are non-interactive (-y) and run as root
- Failure:
  - update()/install() raise FatalAbort with the caller's message
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .util.shell import ROOT, Shell


@dataclass
class Apt:
    shell: Shell

    def installed(self, packages: Sequence[str]) -> bool:
        return self.shell.probe(["dpkg", "-s", *packages])

    def update(self, message: str = "Failed to update package lists.") -> None:
        self.shell.require(["apt-get", "update"], message, as_user=ROOT, label="apt-get update")

    def install(self, packages: Sequence[str], message: str, *, options: Sequence[str] = ()) -> None:
        self.shell.require(
            ["apt-get", "install", "-y", *options, *packages],
            message,
            as_user=ROOT,
            label=f"apt-get install {packages[0]}",
        )
