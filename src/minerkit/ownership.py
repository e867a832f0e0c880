"""Ownership normalizer.

CONTRACT
- Inputs: Shell, target path, owning Identity
- Outputs:
  - Every entry under the path is owned by the identity (uid and gid)
- Invariants:
  - Symlinks are inspected, not followed
  - When everything already matches, no command is executed
- Failure:
  - Raises FatalAbort if the privileged chown fails
"""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from .util.shell import ROOT, Identity, Shell


def foreign_entries(path: Path, owner: Identity) -> list[Path]:
    """Entries under path (including path) not owned by owner."""
    if not path.exists() and not path.is_symlink():
        return []
    found: list[Path] = []

    def check(p: Path) -> None:
        st = p.lstat()
        if st.st_uid != owner.uid or st.st_gid != owner.gid:
            found.append(p)

    check(path)
    if path.is_dir() and not path.is_symlink():
        for root, dirs, files in os.walk(path):
            for name in dirs + files:
                check(Path(root) / name)
    return found


def normalize_ownership(shell: Shell, path: Path, owner: Identity) -> bool:
    """chown -R path to owner if anything under it is foreign. Returns True if it ran."""
    foreign = foreign_entries(path, owner)
    if not foreign:
        return False
    logger.info(f"Setting ownership of {path} to {owner.name} ({len(foreign)} entries)")
    shell.require(
        ["chown", "-R", f"{owner.uid}:{owner.gid}", str(path)],
        f"Failed to set ownership of {path} to {owner.name}.",
        as_user=ROOT,
        label="chown",
    )
    return True
