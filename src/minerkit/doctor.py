"""Host health checks.

CONTRACT
- Inputs: Shell, operator Identity, Settings
- Outputs (required):
  - DoctorReport (ok=bool, items=[(name, status, details)])
- Invariants:
  - Checks: platform, nvcc, docker, nvidia container toolkit, git, python venv,
    checkout, wallets, pm2
  - Does not modify system state (read-only checks)
- Failure:
  - Returns DoctorReport with ok=False if critical checks fail (platform, nvcc)
"""

from __future__ import annotations

import platform
from dataclasses import dataclass

from .config import HostPaths, Settings
from .runner import SUPPORTED_SYSTEM
from .util.shell import Identity, Shell, which


@dataclass(frozen=True)
class DoctorItem:
    name: str
    status: str
    details: str


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    items: list[DoctorItem]


def doctor_report(shell: Shell, operator: Identity, settings: Settings, system: str | None = None) -> DoctorReport:
    items: list[DoctorItem] = []
    ok = True
    paths = HostPaths.for_operator(operator, settings)

    # 1. Critical: platform
    system = system if system is not None else platform.system()
    if system == SUPPORTED_SYSTEM:
        items.append(DoctorItem("platform", "OK", system))
    else:
        ok = False
        items.append(DoctorItem("platform", "FAIL", f"{system} is not supported"))

    # 2. Critical: CUDA
    nvcc = shell.which("nvcc") or which("nvcc", str(settings.cuda.bin_dir))
    if nvcc:
        items.append(DoctorItem("nvcc", "OK", nvcc))
    else:
        ok = False
        items.append(DoctorItem("nvcc", "FAIL", "CUDA not found (run `minerkit platform`)"))

    # 3. Platform components
    docker_bin = shell.which("docker")
    if docker_bin:
        if shell.probe(["docker", "info"], timeout_s=5):
            items.append(DoctorItem("docker", "OK", docker_bin))
        else:
            items.append(DoctorItem("docker", "WARN", "docker installed but not running/accessible"))
    else:
        items.append(DoctorItem("docker", "WARN", "docker not found"))

    if shell.probe(["dpkg", "-s", "nvidia-container-toolkit"]):
        items.append(DoctorItem("nvidia container toolkit", "OK", "installed"))
    else:
        items.append(DoctorItem("nvidia container toolkit", "WARN", "not installed"))

    git_bin = shell.which("git")
    if git_bin:
        items.append(DoctorItem("git binary", "OK", git_bin))
    else:
        items.append(DoctorItem("git binary", "WARN", "git not found in PATH"))

    # 4. Application
    if paths.venv_python.exists():
        items.append(DoctorItem("virtualenv", "OK", str(paths.venv)))
    else:
        items.append(DoctorItem("virtualenv", "INFO", f"{paths.venv} not created yet"))

    if (paths.checkout / ".git").is_dir():
        items.append(DoctorItem("checkout", "OK", str(paths.checkout)))
    elif paths.checkout.exists():
        items.append(DoctorItem("checkout", "WARN", f"{paths.checkout} is not a git checkout (will be recreated)"))
    else:
        items.append(DoctorItem("checkout", "INFO", f"{paths.checkout} not cloned yet"))

    if paths.wallet_dir.is_dir() and any(not p.name.startswith(".") for p in paths.wallet_dir.iterdir()):
        count = sum(1 for p in paths.wallet_dir.iterdir() if not p.name.startswith("."))
        items.append(DoctorItem("wallets", "OK", f"{count} in {paths.wallet_dir}"))
    else:
        items.append(DoctorItem("wallets", "WARN", f"none in {paths.wallet_dir} (btcli new_coldkey / new_hotkey)"))

    pm2_bin = shell.which("pm2")
    if pm2_bin:
        items.append(DoctorItem("pm2", "OK", pm2_bin))
    else:
        items.append(DoctorItem("pm2", "INFO", "pm2 not found; installed by `minerkit miner`"))

    if shell.euid != 0 and not shell.which("sudo"):
        ok = False
        items.append(DoctorItem("sudo", "FAIL", "not root and sudo not found"))

    return DoctorReport(ok=ok, items=items)
