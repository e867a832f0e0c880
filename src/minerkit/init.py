"""Template initializer.

CONTRACT
- Inputs: target directory
- Outputs (required):
  - Writes <dir>/minerkit.yaml
- Invariants:
  - Creates the directory if missing
  - Does not overwrite an existing file (by default)
- Failure:
  - Raises OSError on permission issues
"""

from __future__ import annotations

from pathlib import Path

from .util.paths import copy_template, ensure_dir

SETTINGS_TEMPLATE = "minerkit.yaml"


def write_templates(dest_dir: Path, force: bool = False) -> Path | None:
    ensure_dir(dest_dir)
    dest = dest_dir / SETTINGS_TEMPLATE
    if copy_template(SETTINGS_TEMPLATE, dest, overwrite=force):
        return dest
    return None
