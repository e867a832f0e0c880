"""pm2 process supervisor.

CONTRACT
- Inputs: rendered pm2 document path, checkout directory
- Outputs:
  - `pm2 start <document>` issued as the operator
- Invariants:
  - Never runs pm2 as root on the operator's behalf
- Failure:
  - Raises FatalAbort if pm2 cannot start the process
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .util.shell import Identity, Shell


@dataclass
class Pm2Supervisor:
    shell: Shell
    operator: Identity
    binary: str = "pm2"

    def start(self, document: Path, cwd: Path) -> None:
        logger.info("Starting miner process with PM2...")
        self.shell.require(
            [self.binary, "start", str(document)],
            "Failed to start PM2 process.",
            as_user=self.operator,
            cwd=cwd,
            label="pm2 start",
        )

    @staticmethod
    def log_hint(process_name: str) -> str:
        return f"pm2 logs {process_name}"
